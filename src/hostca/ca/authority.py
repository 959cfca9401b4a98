"""Certificate authority -- bootstrap, generate, submit, sign, clean, list.

:class:`CertificateAuthority` is the only component that combines the
store, the signer, the autosign policy and the authorization engine.
Every mutating operation runs under the store lock inside one
:class:`~hostca.store.unit_of_work.StoreTransaction`, so a failure at
any step leaves the store exactly as it was.

Remote callers are checked against the ``cert.*`` namespaces of the
authorization rules before anything else happens; the local operator
(:meth:`Requester.local_operator`) is always allowed.
"""

from __future__ import annotations

import builtins
import fnmatch
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from hostca.auth.engine import AuthorizationEngine
from hostca.ca.autosign import AutosignPolicy
from hostca.ca.cert_utils import (
    common_name,
    dns_names,
    extra_subject_alt_names,
    fingerprint,
    generate_private_key,
    parse_dns_alt_names,
    public_keys_match,
    subject_alt_names,
    validate_subject_name,
)
from hostca.ca.errors import AuthorizationDenied, CAError, IdentityMismatch, MissingRequest
from hostca.ca.signer import CertificateSigner, build_request, self_sign_root
from hostca.core.state import BOOTSTRAP_TRANSITIONS, assert_transition, log_transition
from hostca.core.types import Artifact, CAState, CertificateStatus
from hostca.logging import security_events
from hostca.logging.context import requester_context
from hostca.models.certificate import CAIdentity, Certificate, CertificateRequest
from hostca.models.listing import ALL, CleanReport, ListingEntry
from hostca.models.requester import Requester
from hostca.store.certificate_store import CertificateStore

if TYPE_CHECKING:
    from hostca.config.settings import HostcaSettings
    from hostca.store.unit_of_work import StoreTransaction

log = logging.getLogger(__name__)

# Serial of the self-signed root; leaf certificates start at 2.
_ROOT_SERIAL = 1

# ``certs/ca.pem`` holds the cached CA certificate.
_RESERVED_NAMES = frozenset({"ca"})

NameFilter = str | Iterable[str] | Callable[[str], bool] | None


def _name_matcher(name_filter: NameFilter) -> Callable[[str], bool]:
    if name_filter is None or name_filter == ALL:
        return lambda _name: True
    if isinstance(name_filter, str):
        return lambda name: fnmatch.fnmatchcase(name, name_filter)
    if callable(name_filter):
        return name_filter
    wanted = frozenset(name_filter)
    return lambda name: name in wanted


class CertificateAuthority:
    """The CA for one on-disk store.

    Parameters
    ----------
    settings:
        Full application settings; ``settings.ca`` drives key generation,
        lifetimes and autosign, ``settings.auth`` the rule file.
    store:
        Optional pre-built store (defaults to one rooted at ``ca.ssldir``).
    auth:
        Optional authorization engine (defaults to the configured rule file).
    autosign:
        Optional autosign policy (defaults to ``ca.autosign``).

    """

    def __init__(
        self,
        settings: HostcaSettings,
        *,
        store: CertificateStore | None = None,
        auth: AuthorizationEngine | None = None,
        autosign: AutosignPolicy | None = None,
    ) -> None:
        self._settings = settings.ca
        self._store = store if store is not None else CertificateStore(settings.ca)
        self._auth = auth if auth is not None else AuthorizationEngine.from_settings(settings.auth)
        self._autosign = autosign if autosign is not None else AutosignPolicy(settings.ca.autosign)
        self._state = CAState.UNINITIALIZED
        self._identity: CAIdentity | None = None
        self._failure: IdentityMismatch | None = None

    @property
    def store(self) -> CertificateStore:
        return self._store

    @property
    def state(self) -> CAState:
        return self._state

    @property
    def ca_name(self) -> str:
        return self._settings.ca_name

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap(self) -> CAIdentity:
        """Load the CA identity, creating it on first use.

        Runs at most once per instance; later calls return the cached
        identity (or re-raise the original :class:`IdentityMismatch`).

        Raises
        ------
        IdentityMismatch
            If a CA certificate is present without a matching CA key.
        LockUnavailable
            If the store lock cannot be acquired.

        """
        if self._identity is not None:
            return self._identity

        with self._store.lock:
            if self._identity is not None:
                return self._identity
            if self._failure is not None:
                raise self._failure

            self._transition(CAState.BOOTSTRAPPING)
            try:
                identity = self._load_identity()
                if identity is None:
                    identity = self._create_identity()
            except IdentityMismatch as exc:
                self._failure = exc
                self._transition(CAState.BOOTSTRAP_FAILED, reason=exc.detail)
                security_events.identity_mismatch(exc.detail)
                raise
            except Exception as exc:
                self._transition(CAState.UNINITIALIZED, reason=str(exc))
                raise

            self._identity = identity
            self._transition(CAState.READY)
            return identity

    def _transition(self, target: CAState, *, reason: str | None = None) -> None:
        assert_transition(self._state, target, BOOTSTRAP_TRANSITIONS)
        log_transition("ca", self.ca_name, self._state, target, reason=reason)
        self._state = target

    def _load_identity(self) -> CAIdentity | None:
        """Load and validate existing CA material; ``None`` if there is none."""
        store = self._store
        root = store.load_ca_certificate()
        cached = store.load_cached_ca_certificate()
        if root is None and cached is None:
            return None

        key = store.load_ca_key()
        if key is None:
            source = store.ca_cert_path if root is not None else store.cached_ca_cert_path
            msg = (
                f"found CA certificate {source} but no CA private key at "
                f"{store.ca_key_path}; this host is not the certificate authority"
            )
            raise IdentityMismatch(msg)

        for path, cert in ((store.ca_cert_path, root), (store.cached_ca_cert_path, cached)):
            if cert is not None and not public_keys_match(cert.public_key(), key.public_key()):
                msg = (
                    f"CA certificate {path} ({cert.subject.rfc4514_string()}) does not "
                    f"match the CA private key at {store.ca_key_path}"
                )
                raise IdentityMismatch(msg)

        serial = store.read_serial()
        if root is None or cached is None or serial is None:
            with store.transaction() as tx:
                if root is None:
                    log.warning("Restoring %s from cached CA certificate", store.ca_cert_path)
                    root = cached
                    store.create_ca_certificate(tx, root)
                elif cached is None:
                    store.cache_ca_certificate(tx, root)
                if serial is None:
                    serial = self._recover_serial(root)
                    log.warning("Serial file missing; resuming at %X", serial)
                    store.write_serial(tx, serial)

        log.info("Loaded CA identity %s", root.subject.rfc4514_string())
        return CAIdentity(root_key=key, root_certificate=root, serial=serial)

    def _recover_serial(self, root: x509.Certificate) -> int:
        highest = root.serial_number
        for name in self._store.certificate_names():
            cert = self._store.load_certificate(name)
            if cert is not None:
                highest = max(highest, cert.serial_number)
        return highest + 1

    def _create_identity(self) -> CAIdentity:
        store = self._store
        settings = self._settings

        key = store.load_ca_key()
        if key is not None:
            log.warning("Found CA key %s without a CA certificate; reusing it", store.ca_key_path)
        else:
            log.info("Generating %s CA key for %s", settings.key_type, settings.ca_name)
            key = generate_private_key(settings.key_type, settings.key_size)

        root = self_sign_root(
            key,
            settings.ca_name,
            serial_number=_ROOT_SERIAL,
            validity_days=settings.ca_ttl_days,
            hash_algorithm=settings.hash_algorithm,
        )

        with store.transaction() as tx:
            created = store.create_ca_certificate(tx, root)
            if created:
                store.save_ca_key(tx, key)
                store.write_serial(tx, _ROOT_SERIAL + 1)
                store.cache_ca_certificate(tx, root)

        if not created:
            log.info("Another process created the CA certificate first; using it")
            identity = self._load_identity()
            if identity is None:
                msg = f"CA certificate {store.ca_cert_path} disappeared during bootstrap"
                raise CAError(msg, retryable=True)
            return identity

        security_events.ca_bootstrapped(settings.ca_name, _ROOT_SERIAL)
        return CAIdentity(root_key=key, root_certificate=root, serial=_ROOT_SERIAL + 1)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def generate(
        self,
        subject_name: str,
        *,
        autosign: bool | None = None,
        dns_alt_names: str | Iterable[str] = (),
        requester: Requester | None = None,
    ) -> Certificate:
        """Create (if needed) and sign a certificate for *subject_name*.

        The operator's explicit request always signs; *autosign* is
        accepted for compatibility and only logged.  A subject that is
        already signed is returned unchanged.
        """
        requester = requester or Requester.local_operator()
        with requester_context(requester):
            self._auth.authorize("cert.generate", requester)
            name = self._check_subject(subject_name)
            alt_names = parse_dns_alt_names(dns_alt_names)
            if autosign is not None:
                log.debug("generate %s: autosign=%s does not apply to the CA operator", name, autosign)

            identity = self.bootstrap()
            with self._store.lock, self._store.transaction() as tx:
                existing = self._store.load_certificate(name)
                if existing is not None:
                    log.info("%s already has a signed certificate; nothing to do", name)
                    return self._certificate(name, existing)

                csr = self._store.load_request(name)
                if csr is None:
                    csr = self._create_request(tx, name, alt_names)
                elif alt_names and dns_names(csr) != subject_alt_names(name, alt_names):
                    log.warning(
                        "Using pending request for %s; requested alt names %s were ignored",
                        name,
                        ", ".join(alt_names),
                    )
                cert = self._sign_pending(tx, identity, name, csr)

            return self._signed(name, cert)

    def sign(self, subject_name: str, *, requester: Requester | None = None) -> Certificate:
        """Sign the pending request for *subject_name*.

        Raises
        ------
        MissingRequest
            If there is neither a pending request nor a signed certificate.

        """
        requester = requester or Requester.local_operator()
        with requester_context(requester):
            self._auth.authorize("cert.sign", requester)
            name = self._check_subject(subject_name)
            identity = self.bootstrap()
            with self._store.lock, self._store.transaction() as tx:
                existing = self._store.load_certificate(name)
                if existing is not None:
                    log.info("%s already has a signed certificate; nothing to do", name)
                    return self._certificate(name, existing)
                csr = self._store.load_request(name)
                if csr is None:
                    raise MissingRequest(name)
                cert = self._sign_pending(tx, identity, name, csr)

            return self._signed(name, cert)

    def submit(
        self,
        csr_pem: str | bytes,
        *,
        requester: Requester,
    ) -> Certificate | CertificateRequest:
        """File a request from a remote host and apply the autosign policy.

        Remote requesters may only submit requests for their own name.
        Requests carrying alt names other than their own name are left
        pending for the operator.
        Returns the certificate when the request was autosigned, else the
        pending request.
        """
        with requester_context(requester):
            self._auth.authorize("cert.submit", requester)
            csr = self._parse_request(csr_pem)
            name = self._check_subject(common_name(csr.subject) or "")
            if not requester.local and name != requester.name.lower():
                reason = f"request is for {name}, not the requester's own name"
                security_events.authorization_denied("cert.submit", str(requester))
                raise AuthorizationDenied("cert.submit", requester, reason)

            identity = self.bootstrap()
            cert = None
            with self._store.lock, self._store.transaction() as tx:
                if self._store.load_certificate(name) is not None:
                    msg = (
                        f"{name} already has a signed certificate; "
                        "clean it before submitting a new request"
                    )
                    raise CAError(msg)
                self._store.save_request(tx, name, csr)
                security_events.request_submitted(name, str(requester), dns_names(csr))

                extra = extra_subject_alt_names(csr, name)
                autosigned = False if extra else self._autosign.evaluate(name)
                if extra:
                    log.warning(
                        "Not autosigning %s: request carries alt names %s; sign it manually",
                        name,
                        ", ".join(extra),
                    )
                security_events.autosign_decision(name, autosigned=autosigned)
                if autosigned:
                    cert = self._sign_pending(tx, identity, name, csr)

            if cert is not None:
                return self._signed(name, cert)
            log.info("Certificate request for %s is pending operator approval", name)
            return self._request(name, csr)

    def clean(self, subject_name: str, *, requester: Requester | None = None) -> CleanReport:
        """Remove every trace of *subject_name* from the store.

        Each artifact is removed independently; cleaning a subject that
        has nothing left returns an empty report.
        """
        requester = requester or Requester.local_operator()
        with requester_context(requester):
            self._auth.authorize("cert.clean", requester)
            name = self._check_subject(subject_name)
            self.bootstrap()

            removed: builtins.list[Artifact] = []
            with self._store.lock, self._store.transaction() as tx:
                if self._store.delete_request(tx, name):
                    log.info("Removed certificate request for %s", name)
                    removed.append(Artifact.REQUEST)
                if self._store.delete_certificate(tx, name):
                    log.info("Removed certificate %s", name)
                    removed.append(Artifact.CERTIFICATE)
                if self._store.delete_cached_certificate(tx, name):
                    log.info("Removed cached certificate for %s", name)
                    removed.append(Artifact.CACHED_CERTIFICATE)
                if self._store.delete_private_key(tx, name):
                    log.info("Removed private key for %s", name)
                    removed.append(Artifact.PRIVATE_KEY)

            if removed:
                security_events.certificate_cleaned(name, [str(a) for a in removed])
            else:
                log.info("Nothing to clean for %s", name)
            return CleanReport(subject_name=name, removed=tuple(removed))

    def list(
        self,
        name_filter: NameFilter = ALL,
        *,
        requester: Requester | None = None,
    ) -> builtins.list[ListingEntry]:
        """Snapshot of pending requests and signed certificates.

        *name_filter* is ``ALL``/``None``, a glob, an iterable of names or
        a predicate.  Does not take the store lock.
        """
        requester = requester or Requester.local_operator()
        with requester_context(requester):
            self._auth.authorize("cert.list", requester)
            matches = _name_matcher(name_filter)
            names = sorted(set(self._store.request_names()) | set(self._store.certificate_names()))

            entries = []
            for name in names:
                if not matches(name):
                    continue
                cert = self._store.load_certificate(name)
                if cert is not None:
                    entries.append(
                        ListingEntry(
                            subject_name=name,
                            status=CertificateStatus.SIGNED,
                            dns_alt_names=dns_names(cert),
                            serial_number=cert.serial_number,
                            fingerprint=fingerprint(cert),
                        ),
                    )
                    continue
                csr = self._store.load_request(name)
                if csr is not None:
                    entries.append(
                        ListingEntry(
                            subject_name=name,
                            status=CertificateStatus.REQUESTED,
                            dns_alt_names=dns_names(csr),
                        ),
                    )
            return entries

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_subject(self, subject_name: str) -> str:
        name = validate_subject_name(subject_name)
        if name in _RESERVED_NAMES or name == self.ca_name.lower():
            msg = f"{name!r} is reserved for the certificate authority itself"
            raise CAError(msg)
        return name

    @staticmethod
    def _parse_request(csr_pem: str | bytes) -> x509.CertificateSigningRequest:
        raw = csr_pem.encode("ascii") if isinstance(csr_pem, str) else csr_pem
        try:
            csr = x509.load_pem_x509_csr(raw)
        except ValueError as exc:
            msg = f"Invalid certificate request: {exc}"
            raise CAError(msg) from exc
        if not csr.is_signature_valid:
            msg = "Certificate request signature is invalid"
            raise CAError(msg)
        if not common_name(csr.subject):
            msg = "Certificate request has no subject common name"
            raise CAError(msg)
        return csr

    def _create_request(
        self,
        tx: StoreTransaction,
        name: str,
        alt_names: tuple[str, ...],
    ) -> x509.CertificateSigningRequest:
        key = self._store.load_private_key(name)
        if key is None:
            key = generate_private_key(self._settings.key_type, self._settings.key_size)
            self._store.save_private_key(tx, name, key)
        csr = build_request(name, key, alt_names, hash_algorithm=self._settings.hash_algorithm)
        self._store.save_request(tx, name, csr)
        log.info("Created certificate request for %s", name)
        return csr

    def _sign_pending(
        self,
        tx: StoreTransaction,
        identity: CAIdentity,
        name: str,
        csr: x509.CertificateSigningRequest,
    ) -> x509.Certificate:
        if common_name(csr.subject) != name:
            msg = f"Certificate request for {name} carries subject {csr.subject.rfc4514_string()}"
            raise CAError(msg)
        serial = self._store.next_serial(tx)
        signer = CertificateSigner(identity, hash_algorithm=self._settings.hash_algorithm)
        cert = signer.sign(csr, serial_number=serial, validity_days=self._settings.cert_ttl_days)
        self._store.save_certificate(tx, name, cert)
        self._store.delete_request(tx, name)
        return cert

    def _signed(self, name: str, cert: x509.Certificate) -> Certificate:
        """Report a newly committed certificate."""
        result = self._certificate(name, cert)
        security_events.certificate_signed(name, cert.serial_number, result.dns_alt_names)
        return result

    @staticmethod
    def _certificate(name: str, cert: x509.Certificate) -> Certificate:
        return Certificate(
            subject_name=name,
            serial_number=cert.serial_number,
            public_key=cert.public_key(),
            issuer=cert.issuer.rfc4514_string(),
            dns_alt_names=dns_names(cert),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            fingerprint=fingerprint(cert),
            pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        )

    def _request(self, name: str, csr: x509.CertificateSigningRequest) -> CertificateRequest:
        return CertificateRequest(
            subject_name=name,
            public_key=csr.public_key(),
            dns_alt_names=dns_names(csr),
            submitted_at=self._store.request_submitted_at(name) or datetime.now(UTC),
            pem=csr.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        )
