"""Tests for hostca.ca.authority.CertificateAuthority.

Everything runs against a real on-disk store in a temp directory with
real (EC) keys; nothing below the authority is mocked except where a
failure has to be injected.
"""

from __future__ import annotations

import logging
import threading
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives import serialization

from hostca.ca.authority import CertificateAuthority
from hostca.ca.cert_utils import generate_private_key, public_keys_match
from hostca.ca.errors import AuthorizationDenied, CAError, IdentityMismatch, MissingRequest
from hostca.ca.signer import CertificateSigner, build_request, self_sign_root
from hostca.core.types import Artifact, CAState, CertificateStatus
from hostca.models.certificate import Certificate, CertificateRequest
from hostca.models.listing import ALL
from hostca.models.requester import Requester

RULES = """\
[cert.submit]
    allow *.example.com
[cert]
    allow admin.example.com
    deny *.example.com
"""

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def authority(settings) -> CertificateAuthority:
    return CertificateAuthority(settings)


@pytest.fixture()
def rules_file(tmp_path):
    path = tmp_path / "auth.conf"
    path.write_text(RULES, encoding="utf-8")
    return path


@pytest.fixture()
def remote_authority(make_settings, rules_file):
    """Factory for an authority with the test rules and a given autosign value."""

    def _make(autosign=False) -> CertificateAuthority:
        return CertificateAuthority(
            make_settings(ca={"autosign": autosign}, auth={"rules_file": str(rules_file)}),
        )

    return _make


def _csr_pem(name: str, alt_names: tuple[str, ...] = ()) -> str:
    csr = build_request(name, generate_private_key("ec"), alt_names)
    return csr.public_bytes(serialization.Encoding.PEM).decode("ascii")


def _plant_foreign_ca(store) -> None:
    """Cache another authority's root certificate, as an agent host would."""
    foreign = self_sign_root(generate_private_key("ec"), "Foreign CA", serial_number=1, validity_days=30)
    store.cached_ca_cert_path.parent.mkdir(parents=True, exist_ok=True)
    store.cached_ca_cert_path.write_bytes(foreign.public_bytes(serialization.Encoding.PEM))


def _files_under(root) -> set[str]:
    return {str(p.relative_to(root)) for p in root.rglob("*") if p.is_file()}


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


class TestBootstrap:
    def test_creates_root_identity(self, authority):
        assert authority.state is CAState.UNINITIALIZED
        identity = authority.bootstrap()

        store = authority.store
        assert authority.state is CAState.READY
        assert identity.root_certificate.serial_number == 1
        assert identity.serial == 2
        assert identity.name == "CN=Test CA"
        assert store.read_serial() == 2
        assert store.load_ca_certificate() == identity.root_certificate
        assert store.load_cached_ca_certificate() == identity.root_certificate
        assert public_keys_match(
            store.load_ca_key().public_key(),
            identity.root_certificate.public_key(),
        )

    def test_runs_once_per_instance(self, authority):
        assert authority.bootstrap() is authority.bootstrap()

    def test_second_instance_loads_existing_identity(self, settings, authority):
        first = authority.bootstrap()
        second = CertificateAuthority(settings).bootstrap()
        assert second.root_certificate == first.root_certificate
        assert second.serial == 2

    def test_logs_security_event(self, authority, caplog):
        with caplog.at_level(logging.INFO, logger="hostca.security"):
            authority.bootstrap()
        events = [getattr(r, "event_id", None) for r in caplog.records]
        assert "hostca.security.ca_bootstrapped" in events

    def test_foreign_cached_ca_is_identity_mismatch(self, authority, ssldir):
        _plant_foreign_ca(authority.store)
        before = _files_under(ssldir)

        with pytest.raises(IdentityMismatch, match="no CA private key"):
            authority.bootstrap()

        assert authority.state is CAState.BOOTSTRAP_FAILED
        assert _files_under(ssldir) - before <= {"ca/.lock"}

    def test_failure_is_sticky(self, authority):
        _plant_foreign_ca(authority.store)
        with pytest.raises(IdentityMismatch) as first:
            authority.bootstrap()
        with pytest.raises(IdentityMismatch) as second:
            authority.bootstrap()
        assert first.value is second.value

    def test_mismatched_key(self, settings, authority):
        authority.bootstrap()
        store = authority.store
        store.ca_key_path.write_bytes(
            generate_private_key("ec").private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )
        with pytest.raises(IdentityMismatch, match="does not match"):
            CertificateAuthority(settings).bootstrap()

    def test_restores_missing_cached_certificate(self, settings, authority):
        identity = authority.bootstrap()
        authority.store.cached_ca_cert_path.unlink()

        CertificateAuthority(settings).bootstrap()
        assert authority.store.load_cached_ca_certificate() == identity.root_certificate

    def test_recovers_missing_serial(self, settings, authority):
        authority.generate("web01")
        authority.generate("web02")
        authority.store.serial_path.unlink()

        fresh = CertificateAuthority(settings)
        assert fresh.bootstrap().serial == 4
        assert fresh.generate("web03").serial_number == 4

    def test_reuses_orphaned_ca_key(self, authority):
        key = generate_private_key("ec")
        store = authority.store
        store.ca_key_path.parent.mkdir(parents=True)
        store.ca_key_path.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )
        identity = authority.bootstrap()
        assert public_keys_match(identity.root_certificate.public_key(), key.public_key())

    def test_concurrent_bootstrap_persists_one_root(self, settings):
        workers = 6
        barrier = threading.Barrier(workers)
        results: list = []
        errors: list[BaseException] = []

        def run():
            ca = CertificateAuthority(settings)
            barrier.wait()
            try:
                results.append(ca.bootstrap())
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=run) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(results) == workers
        roots = {r.root_certificate.public_bytes(serialization.Encoding.DER) for r in results}
        assert len(roots) == 1
        assert {r.serial for r in results} == {2}


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_generate_list_clean_cycle(self, authority):
        cert = authority.generate("web01")
        assert isinstance(cert, Certificate)
        assert cert.status is CertificateStatus.SIGNED
        assert cert.serial_number == 2

        entries = authority.list(ALL)
        assert [(e.subject_name, e.status) for e in entries] == [("web01", CertificateStatus.SIGNED)]
        assert entries[0].fingerprint == cert.fingerprint

        report = authority.clean("web01")
        assert set(report.removed) == {
            Artifact.CERTIFICATE,
            Artifact.CACHED_CERTIFICATE,
            Artifact.PRIVATE_KEY,
        }
        assert authority.list(ALL) == []

    @pytest.mark.parametrize("configured", [True, False])
    @pytest.mark.parametrize("requested", [True, False, None])
    def test_operator_always_signs(self, make_settings, configured, requested):
        authority = CertificateAuthority(make_settings(ca={"autosign": configured}))
        cert = authority.generate("web01", autosign=requested)
        assert cert.status is CertificateStatus.SIGNED
        assert authority.store.load_request("web01") is None

    @pytest.mark.parametrize("autosign", [True, False])
    def test_foreign_ca_fails_regardless_of_autosign(self, make_settings, ssldir, autosign):
        authority = CertificateAuthority(make_settings(ca={"autosign": autosign}))
        _plant_foreign_ca(authority.store)
        before = _files_under(ssldir)

        with pytest.raises(IdentityMismatch):
            authority.generate("web01", autosign=autosign)

        created = _files_under(ssldir) - before
        assert created <= {"ca/.lock"}

    def test_dns_alt_names_preserved_and_listed(self, authority):
        cert = authority.generate("web01", dns_alt_names="foo,bar")
        assert cert.dns_alt_names == ("web01", "foo", "bar")

        (entry,) = authority.list(["web01"])
        assert entry.dns_alt_names == ("web01", "foo", "bar")
        assert '"DNS:foo", "DNS:bar"' in entry.render()

    def test_invalid_alt_name_rejected_before_anything_is_written(self, authority, ssldir):
        with pytest.raises(CAError, match="not ASCII"):
            authority.generate("web01", dns_alt_names="bücher.example.com")
        assert not ssldir.exists()

    def test_pending_request_with_subject_in_alt_names_does_not_warn(self, remote_authority, caplog):
        authority = remote_authority(autosign=False)
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com", ("www.example.com",)), requester=requester)

        with caplog.at_level(logging.WARNING, logger="hostca.ca.authority"):
            authority.generate("web01.example.com", dns_alt_names="web01.example.com,www.example.com")
        assert "were ignored" not in caplog.text

    def test_pending_request_with_other_alt_names_warns(self, remote_authority, caplog):
        authority = remote_authority(autosign=False)
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com", ("www.example.com",)), requester=requester)

        with caplog.at_level(logging.WARNING, logger="hostca.ca.authority"):
            cert = authority.generate("web01.example.com", dns_alt_names="api.example.com")
        assert "were ignored" in caplog.text
        assert cert.dns_alt_names == ("web01.example.com", "www.example.com")

    def test_already_signed_is_noop(self, authority):
        first = authority.generate("web01")
        second = authority.generate("web01")
        assert second.serial_number == first.serial_number
        assert authority.store.read_serial() == 3

    def test_serials_increment(self, authority):
        assert authority.generate("a").serial_number == 2
        assert authority.generate("b").serial_number == 3
        assert authority.store.read_serial() == 4

    def test_reuses_existing_private_key(self, authority):
        key = generate_private_key("ec")
        store = authority.store
        with store.lock, store.transaction() as tx:
            store.save_private_key(tx, "web01", key)

        cert = authority.generate("web01")
        assert public_keys_match(cert.public_key, key.public_key())

    def test_signing_failure_rolls_back(self, authority):
        authority.bootstrap()
        store = authority.store
        with patch.object(CertificateSigner, "sign", side_effect=CAError("boom")):
            with pytest.raises(CAError, match="boom"):
                authority.generate("web01")

        assert store.read_serial() == 2
        assert store.load_request("web01") is None
        assert store.load_private_key("web01") is None
        assert store.load_certificate("web01") is None

    @pytest.mark.parametrize("name", ["ca", "test ca"])
    def test_reserved_names_refused(self, authority, name):
        with pytest.raises(CAError):
            authority.generate(name)

    def test_emits_certificate_signed(self, authority, caplog):
        with caplog.at_level(logging.INFO, logger="hostca.security"):
            authority.generate("web01")
        signed = [r for r in caplog.records if getattr(r, "event_id", "") == "hostca.security.certificate_signed"]
        assert len(signed) == 1
        assert signed[0].subject_name == "web01"


# ---------------------------------------------------------------------------
# sign
# ---------------------------------------------------------------------------


class TestSign:
    def test_signs_pending_request(self, remote_authority):
        authority = remote_authority(autosign=False)
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com"), requester=requester)

        cert = authority.sign("web01.example.com")
        assert cert.serial_number == 2
        assert authority.store.load_request("web01.example.com") is None

    def test_missing_request(self, authority):
        with pytest.raises(MissingRequest, match="Could not find certificate request for web01"):
            authority.sign("web01")

    def test_already_signed_is_noop(self, authority):
        first = authority.generate("web01")
        assert authority.sign("web01").serial_number == first.serial_number


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


class TestSubmit:
    def test_pending_without_autosign(self, remote_authority):
        authority = remote_authority(autosign=False)
        requester = Requester.remote("web01.example.com", "10.0.0.5")

        result = authority.submit(_csr_pem("web01.example.com", ("www",)), requester=requester)

        assert isinstance(result, CertificateRequest)
        assert result.dns_alt_names == ("web01.example.com", "www")
        (entry,) = authority.list(ALL)
        assert entry.status is CertificateStatus.REQUESTED

    def test_autosigned_by_pattern(self, remote_authority):
        authority = remote_authority(autosign=["*.example.com"])
        requester = Requester.remote("web01.example.com", "10.0.0.5")

        result = authority.submit(_csr_pem("web01.example.com"), requester=requester)

        assert isinstance(result, Certificate)
        assert authority.store.load_request("web01.example.com") is None

    def test_autosign_policy_file(self, make_settings, rules_file, tmp_path):
        policy = tmp_path / "autosign.conf"
        policy.write_text("# web tier\nweb*.example.com\n", encoding="utf-8")
        authority = CertificateAuthority(
            make_settings(ca={"autosign": str(policy)}, auth={"rules_file": str(rules_file)}),
        )

        web = authority.submit(
            _csr_pem("web01.example.com"),
            requester=Requester.remote("web01.example.com", "10.0.0.5"),
        )
        db = authority.submit(
            _csr_pem("db01.example.com"),
            requester=Requester.remote("db01.example.com", "10.0.0.6"),
        )
        assert isinstance(web, Certificate)
        assert isinstance(db, CertificateRequest)

    def test_rejects_already_signed(self, remote_authority):
        authority = remote_authority(autosign=True)
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com"), requester=requester)

        with pytest.raises(CAError, match="already has a signed certificate"):
            authority.submit(_csr_pem("web01.example.com"), requester=requester)

    def test_rejects_request_for_another_host(self, remote_authority, ssldir):
        authority = remote_authority()
        with pytest.raises(AuthorizationDenied, match="not the requester's own name") as exc_info:
            authority.submit(
                _csr_pem("db01.example.com"),
                requester=Requester.remote("web01.example.com", "10.0.0.5"),
            )
        assert exc_info.value.namespace == "cert.submit"
        assert not ssldir.exists()

    def test_extra_alt_names_are_not_autosigned(self, remote_authority, caplog):
        authority = remote_authority(autosign=["*.example.com"])
        requester = Requester.remote("web01.example.com", "10.0.0.5")

        with caplog.at_level(logging.WARNING, logger="hostca.ca.authority"):
            result = authority.submit(
                _csr_pem("web01.example.com", ("db01.example.com", "*.example.com")),
                requester=requester,
            )

        assert isinstance(result, CertificateRequest)
        assert result.dns_alt_names == ("web01.example.com", "db01.example.com", "*.example.com")
        assert authority.store.load_certificate("web01.example.com") is None
        assert "Not autosigning web01.example.com" in caplog.text

    def test_alt_name_equal_to_subject_still_autosigned(self, remote_authority):
        authority = remote_authority(autosign=["*.example.com"])
        requester = Requester.remote("web01.example.com", "10.0.0.5")

        result = authority.submit(_csr_pem("web01.example.com", ("web01.example.com",)), requester=requester)

        assert isinstance(result, Certificate)

    def test_operator_signs_request_with_alt_names(self, remote_authority):
        authority = remote_authority(autosign=True)
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com", ("www.example.com",)), requester=requester)

        cert = authority.sign("web01.example.com")
        assert cert.dns_alt_names == ("web01.example.com", "www.example.com")

    def test_rejects_garbage(self, remote_authority):
        authority = remote_authority()
        with pytest.raises(CAError, match="Invalid certificate request"):
            authority.submit(
                "-----BEGIN CERTIFICATE REQUEST-----\nxx\n-----END CERTIFICATE REQUEST-----\n",
                requester=Requester.remote("web01.example.com", "10.0.0.5"),
            )

    def test_denied_without_rules(self, authority, ssldir):
        with pytest.raises(AuthorizationDenied):
            authority.submit(
                _csr_pem("web01.example.com"),
                requester=Requester.remote("web01.example.com", "10.0.0.5"),
            )
        assert not ssldir.exists()


# ---------------------------------------------------------------------------
# clean
# ---------------------------------------------------------------------------


class TestClean:
    def test_idempotent(self, authority):
        authority.generate("web01")
        first = authority.clean("web01")
        second = authority.clean("web01")

        assert not first.nothing_removed
        assert second.nothing_removed
        assert second.removed == ()

    def test_never_cleaned_subject(self, authority):
        assert authority.clean("ghost").nothing_removed

    def test_pending_request_only(self, remote_authority):
        authority = remote_authority()
        requester = Requester.remote("web01.example.com", "10.0.0.5")
        authority.submit(_csr_pem("web01.example.com"), requester=requester)

        report = authority.clean("web01.example.com")
        assert report.removed == (Artifact.REQUEST,)

    def test_logs_removals(self, authority, caplog):
        authority.generate("web01")
        with caplog.at_level(logging.INFO, logger="hostca.ca.authority"):
            authority.clean("web01")
        assert "Removed certificate web01" in caplog.text
        assert "Removed private key for web01" in caplog.text

    def test_ca_name_refused(self, authority):
        with pytest.raises(CAError, match="reserved"):
            authority.clean("ca")
        assert authority.store.load_cached_ca_certificate() is None

    def test_remote_denied_leaves_store_untouched(self, remote_authority):
        authority = remote_authority()
        authority.generate("web01")
        with pytest.raises(AuthorizationDenied):
            authority.clean("web01", requester=Requester.remote("web02.example.com", "10.0.0.7"))
        assert authority.store.load_certificate("web01") is not None

    def test_remote_allowed(self, remote_authority):
        authority = remote_authority()
        authority.generate("web01")
        report = authority.clean("web01", requester=Requester.remote("admin.example.com", "10.0.0.1"))
        assert Artifact.CERTIFICATE in report.removed


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


class TestList:
    @pytest.fixture()
    def populated(self, remote_authority):
        authority = remote_authority()
        for name in ("web02", "db01", "web01"):
            authority.generate(name)
        authority.submit(
            _csr_pem("app01.example.com"),
            requester=Requester.remote("app01.example.com", "10.0.0.9"),
        )
        return authority

    def test_all_sorted(self, populated):
        entries = populated.list()
        assert [e.subject_name for e in entries] == ["app01.example.com", "db01", "web01", "web02"]
        assert entries[0].status is CertificateStatus.REQUESTED
        assert entries[0].serial_number is None

    def test_none_means_all(self, populated):
        assert len(populated.list(None)) == 4

    def test_glob(self, populated):
        assert [e.subject_name for e in populated.list("web*")] == ["web01", "web02"]

    def test_iterable(self, populated):
        assert [e.subject_name for e in populated.list({"db01", "missing"})] == ["db01"]

    def test_predicate(self, populated):
        entries = populated.list(lambda name: name.endswith("1"))
        assert [e.subject_name for e in entries] == ["db01", "web01"]

    def test_remote_list_authorized(self, populated):
        admin = Requester.remote("admin.example.com", "10.0.0.1")
        assert len(populated.list(requester=admin)) == 4
        with pytest.raises(AuthorizationDenied):
            populated.list(requester=Requester.remote("web01.example.com", "10.0.0.5"))
