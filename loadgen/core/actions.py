"""Action legality and execution for a single dispatch cycle.

Which actions a cycle may take is decided by ``LEGALITY_TABLE``: each entry
pairs an action with a predicate over a ``CycleView`` (registry capacity plus
a snapshot of the selected client). The table is evaluated fresh every cycle
and one legal action is drawn uniformly at random.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from random import Random
from typing import Awaitable, Callable

import httpx

from loadgen.core.models import Action
from loadgen.core.registry import Authorization, ClientRecord, ClientState
from loadgen.core.signing import JWSSigner, b64url, build_csr, generate_rsa_key
from loadgen.core.state import EngineState
from loadgen.exceptions import CycleAbortedError, DispatchError, ProtocolError
from loadgen.logger import Logger

# Revocation needs more than this many issued certificates, so the population
# keeps a mix of certificate-holding clients.
REVOKE_THRESHOLD = 2

CHALLENGE_TYPE = "http-01"


@dataclass(frozen=True)
class CycleView:
    registry_has_capacity: bool
    client: ClientRecord | None
    state: ClientState | None


def _has_client(view: CycleView) -> bool:
    return view.client is not None


def _has_authorization(view: CycleView) -> bool:
    return view.state is not None and len(view.state.authorizations) > 0


def _can_revoke(view: CycleView) -> bool:
    return view.state is not None and len(view.state.certificates) > REVOKE_THRESHOLD


LEGALITY_TABLE: tuple[tuple[Action, Callable[[CycleView], bool]], ...] = (
    (Action.NEW_REGISTRATION, lambda view: view.registry_has_capacity),
    (Action.NEW_AUTHORIZATION, _has_client),
    (Action.NEW_CERTIFICATE, _has_authorization),
    (Action.REVOKE_CERTIFICATE, _can_revoke),
)


def legal_actions(view: CycleView) -> list[Action]:
    return [action for action, predicate in LEGALITY_TABLE if predicate(view)]


class CycleOutcome(str, Enum):
    OK = "ok"
    FAILED = "failed"
    ABORTED = "aborted"
    SKIPPED = "skipped"
    NO_ACTION = "no_action"


def action_label(action: Action) -> str:
    return f"POST /acme/{action.value}"


class Dispatcher:
    """Runs dispatch cycles against the shared EngineState."""

    def __init__(
        self,
        state: EngineState,
        *,
        rng: Random | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._state = state
        self._rng = rng or Random()
        self._logger = logger or state.logger
        self._handlers: dict[Action, Callable[[ClientRecord | None], Awaitable[bool]]] = {
            Action.NEW_REGISTRATION: self.new_registration,
            Action.NEW_AUTHORIZATION: self.new_authorization,
            Action.NEW_CERTIFICATE: self.new_certificate,
            Action.REVOKE_CERTIFICATE: self.revoke_certificate,
        }

    def observe(self) -> CycleView:
        """Select a random client and snapshot what the cycle may do."""
        registry = self._state.registry
        has_capacity = registry.has_capacity()
        client = registry.random_pick()
        snapshot = client.snapshot() if client is not None else None
        return CycleView(registry_has_capacity=has_capacity, client=client, state=snapshot)

    async def dispatch(self) -> CycleOutcome:
        """One full cycle: observe, pick a legal action, execute it."""
        if self._state.stop_event.is_set():
            return CycleOutcome.ABORTED

        view = self.observe()
        actions = legal_actions(view)
        if not actions:
            self._logger.warning(
                "loadgen.dispatch_no_action",
                event="loadgen.dispatch_no_action",
                registry_size=self._state.registry.size(),
                max_regs=self._state.registry.max_size,
            )
            return CycleOutcome.NO_ACTION

        action = self._rng.choice(actions)
        return await self.execute(action, view.client)

    async def execute(self, action: Action, client: ClientRecord | None) -> CycleOutcome:
        try:
            performed = await self._handlers[action](client)
        except CycleAbortedError:
            self._logger.debug(
                "loadgen.action_aborted",
                event="loadgen.action_aborted",
                action=action.value,
            )
            return CycleOutcome.ABORTED
        except DispatchError as exc:
            self._logger.warning(
                "loadgen.action_failed",
                event="loadgen.action_failed",
                action=action.value,
                error_code=exc.code,
                error=exc.message,
                details=exc.details,
            )
            return CycleOutcome.FAILED

        if not performed:
            return CycleOutcome.SKIPPED

        self._logger.debug(
            "loadgen.action_ok",
            event="loadgen.action_ok",
            action=action.value,
        )
        return CycleOutcome.OK

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def new_registration(self, client: ClientRecord | None = None) -> bool:
        state = self._state
        if not state.registry.reserve():
            self._logger.debug(
                "loadgen.registration_skipped",
                event="loadgen.registration_skipped",
                reason="registry_full",
            )
            return False

        added = False
        try:
            self._checkpoint()
            key = await asyncio.to_thread(generate_rsa_key, state.config.key_size)
            signer = JWSSigner(key)

            self._checkpoint()
            response = await state.target.signed_post(
                signer,
                state.target.endpoint(f"acme/{Action.NEW_REGISTRATION.value}"),
                {
                    "resource": Action.NEW_REGISTRATION.value,
                    "contact": [f"mailto:{state.config.contact_email}"],
                },
                label=action_label(Action.NEW_REGISTRATION),
                expected=(201,),
            )
            registration_url = response.headers.get("Location")

            terms = _terms_of_service(response)
            if terms and registration_url:
                self._checkpoint()
                await state.target.signed_post(
                    signer,
                    registration_url,
                    {"resource": "reg", "agreement": terms},
                    label="POST /acme/reg",
                    expected=(200, 202),
                )

            state.registry.add(
                ClientRecord(key=key, signer=signer, registration_url=registration_url),
                reserved=True,
            )
            added = True
        finally:
            if not added:
                state.registry.release()
        return True

    async def new_authorization(self, client: ClientRecord | None) -> bool:
        client = self._require_client(client)
        state = self._state
        domain = f"{uuid.uuid4().hex[:16]}.{state.config.domain_base.strip('.')}"

        self._checkpoint()
        response = await state.target.signed_post(
            client.signer,
            state.target.endpoint(f"acme/{Action.NEW_AUTHORIZATION.value}"),
            {
                "resource": Action.NEW_AUTHORIZATION.value,
                "identifier": {"type": "dns", "value": domain},
            },
            label=action_label(Action.NEW_AUTHORIZATION),
            expected=(201,),
        )
        token, challenge_url = _http01_challenge(response)
        authz_url = response.headers.get("Location") or challenge_url

        key_authorization = client.signer.key_authorization(token)
        # The responder must know the token before the target is told to validate.
        state.challenges.add(token, key_authorization)
        submitted = False
        try:
            self._checkpoint()
            await state.target.signed_post(
                client.signer,
                challenge_url,
                {
                    "resource": "challenge",
                    "type": CHALLENGE_TYPE,
                    "keyAuthorization": key_authorization,
                },
                label="POST /acme/challenge",
                expected=(200, 202),
            )
            submitted = True
        finally:
            # Any exit short of a successful submission drops the token.
            if not submitted:
                state.challenges.remove(token)

        ttl = state.config.challenge_ttl_seconds
        if ttl > 0:
            asyncio.get_running_loop().call_later(ttl, state.challenges.remove, token)

        client.add_authorization(Authorization(url=authz_url, domain=domain, token=token))
        return True

    async def new_certificate(self, client: ClientRecord | None) -> bool:
        client = self._require_client(client)
        state = self._state
        snapshot = client.snapshot()
        if not snapshot.authorizations:
            raise DispatchError("client holds no authorization", details={"action": Action.NEW_CERTIFICATE.value})

        authz = self._rng.choice(snapshot.authorizations)
        csr = build_csr(state.cert_key, authz.domain)

        self._checkpoint()
        response = await state.target.signed_post(
            client.signer,
            state.target.endpoint(f"acme/{Action.NEW_CERTIFICATE.value}"),
            {"resource": Action.NEW_CERTIFICATE.value, "csr": b64url(csr)},
            label=action_label(Action.NEW_CERTIFICATE),
            expected=(201,),
        )

        certificate_id = b64url(response.content) if response.content else response.headers.get("Location")
        if not certificate_id:
            raise ProtocolError(
                "certificate response carried neither a body nor a Location",
                details={"status_code": response.status_code},
            )
        client.add_certificate(certificate_id)
        return True

    async def revoke_certificate(self, client: ClientRecord | None) -> bool:
        client = self._require_client(client)
        state = self._state
        snapshot = client.snapshot()
        if not snapshot.certificates:
            raise DispatchError("client holds no certificate", details={"action": Action.REVOKE_CERTIFICATE.value})

        certificate_id = self._rng.choice(snapshot.certificates)

        self._checkpoint()
        await state.target.signed_post(
            client.signer,
            state.target.endpoint(f"acme/{Action.REVOKE_CERTIFICATE.value}"),
            {"resource": Action.REVOKE_CERTIFICATE.value, "certificate": certificate_id},
            label=action_label(Action.REVOKE_CERTIFICATE),
            expected=(200,),
        )
        return True

    def _checkpoint(self) -> None:
        if self._state.stop_event.is_set():
            raise CycleAbortedError("run is stopping")

    @staticmethod
    def _require_client(client: ClientRecord | None) -> ClientRecord:
        if client is None:
            raise DispatchError("action requires an existing client")
        return client


def _terms_of_service(response: httpx.Response) -> str | None:
    link = response.links.get("terms-of-service")
    return link.get("url") if link else None


def _http01_challenge(response: httpx.Response) -> tuple[str, str]:
    """Extract (token, uri) of the http-01 challenge from an authorization."""
    try:
        body = response.json()
    except ValueError as exc:
        raise ProtocolError("authorization body is not JSON") from exc

    challenges = body.get("challenges") if isinstance(body, dict) else None
    for challenge in challenges or []:
        if not isinstance(challenge, dict) or challenge.get("type") != CHALLENGE_TYPE:
            continue
        token = challenge.get("token")
        uri = challenge.get("uri") or challenge.get("url")
        if token and uri:
            return str(token), str(uri)

    raise ProtocolError(
        "authorization offered no usable http-01 challenge",
        details={"challenge_types": [c.get("type") for c in challenges or [] if isinstance(c, dict)]},
    )
