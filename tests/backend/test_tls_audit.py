import json
import os
from datetime import datetime, timezone

import pytest

from conftest import VALID_CERT, FakeDiagnostics
from tls.tls_audit import (
    CertificateInfo,
    CertificateParseError,
    OpenSslDiagnostics,
    TlsProbeError,
    audit_transcript,
    common_name_from_subject,
    extract_leaf_certificate,
    grade_for,
    main,
    parse_x509_fields,
    scan_transcript,
)

HOST = "93.184.216.34"
NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)

PEM = (
    "-----BEGIN CERTIFICATE-----\n"
    "MIIBszCCAVmgAwIBAgIUQ2VydGlmaWNhdGVGb3JUZXN0czAKBggqhkjOPQQDAjAW\n"
    "-----END CERTIFICATE-----\n"
)
SECOND_PEM = PEM.replace("MIIBszCC", "MIIBtDCC")

CLEAN = (
    "CONNECTED(00000003)\n"
    "---\n"
    "Certificate chain\n"
    " 0 s:CN = 93.184.216.34\n"
    "---\n"
    "Server certificate\n"
    + PEM +
    "---\n"
    "New, TLSv1.3, Cipher is TLS_AES_256_GCM_SHA384\n"
    "Compression: NONE\n"
    "SSL-Session:\n"
    "    Protocol  : TLSv1.3\n"
    "    Cipher    : TLS_AES_256_GCM_SHA384\n"
    "    Verify return code: 0 (ok)\n"
)

LEGACY_RC4 = CLEAN.replace("TLSv1.3", "TLSv1.1").replace("TLS_AES_256_GCM_SHA384", "RC4-SHA")

SELF_SIGNED = (
    "CONNECTED(00000003)\n"
    "depth=0 CN = 93.184.216.34\n"
    "verify error:num=18:self-signed certificate\n"
    + PEM +
    "New, TLSv1.2, Cipher is ECDHE-RSA-AES128-GCM-SHA256\n"
    "    Cipher    : ECDHE-RSA-AES128-GCM-SHA256\n"
    "Compression: NONE\n"
)

NO_CIPHER = (
    "CONNECTED(00000003)\n"
    "New, (NONE), Cipher is (NONE)\n"
    "    Cipher    : 0000\n"
    "Compression: NONE\n"
)


def expired_cert(subject="CN=93.184.216.34", cn="93.184.216.34"):
    return CertificateInfo(
        subject=subject,
        common_name=cn,
        not_before=datetime(2020, 1, 1, tzinfo=timezone.utc),
        not_after=datetime(2021, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("count,grade", [(0, "A+"), (1, "A"), (2, "B"), (3, "C"), (4, "D"), (9, "D")])
def test_grade_is_function_of_issue_count(count, grade):
    assert grade_for(count) == grade


def test_clean_transcript_grades_a_plus():
    result = audit_transcript(HOST, CLEAN, FakeDiagnostics(cert=VALID_CERT), now=NOW)
    assert result.issues == []
    assert result.grade == "A+"
    assert result.cert_valid_from == VALID_CERT.not_before.isoformat()
    assert result.cert_valid_to == VALID_CERT.not_after.isoformat()


def test_one_issue_grades_a():
    result = audit_transcript(HOST, CLEAN, FakeDiagnostics(cert=expired_cert()), now=NOW)
    assert result.issues == ["Certificate expired"]
    assert result.grade == "A"


def test_two_issues_grade_b():
    result = audit_transcript(HOST, LEGACY_RC4, FakeDiagnostics(cert=VALID_CERT), now=NOW)
    assert result.issues == ["TLS 1.0/1.1 supported", "Weak cipher: RC4"]
    assert result.grade == "B"


def test_three_issues_grade_c():
    result = audit_transcript(HOST, LEGACY_RC4, FakeDiagnostics(cert=expired_cert()), now=NOW)
    assert result.issues == ["TLS 1.0/1.1 supported", "Weak cipher: RC4", "Certificate expired"]
    assert result.grade == "C"


def test_four_issues_grade_d():
    cert = expired_cert(subject="CN=example.org,O=Other", cn="example.org")
    result = audit_transcript(HOST, SELF_SIGNED, FakeDiagnostics(cert=cert), now=NOW)
    assert result.issues == [
        "Self-signed certificate",
        "Verification errors present",
        "Certificate expired",
        "Certificate CN mismatch: CN=example.org,O=Other",
    ]
    assert result.grade == "D"


def test_missing_certificate_and_cipher():
    result = audit_transcript(HOST, NO_CIPHER, FakeDiagnostics(), now=NOW)
    assert result.issues == ["No valid cipher negotiated", "No certificate returned"]
    assert result.cert_valid_from is None
    assert result.cert_valid_to is None
    assert result.grade == "B"


def test_certificate_parse_failure_is_recorded_as_issue():
    result = audit_transcript(HOST, CLEAN, FakeDiagnostics(cert=None), now=NOW)
    assert result.issues == ["Error parsing certificate"]
    assert result.cert_valid_to is None
    assert result.grade == "A"


def test_modern_protocol_versions_are_not_flagged():
    assert scan_transcript(CLEAN) == []
    assert "TLS 1.0/1.1 supported" not in scan_transcript(CLEAN.replace("TLSv1.3", "TLSv1.2"))
    assert "TLS 1.0/1.1 supported" in scan_transcript(CLEAN.replace("TLSv1.3", "TLSv1"))


def test_null_cipher_and_compression_markers():
    transcript = CLEAN + "New, TLSv1.2, Cipher is NULL\nCompression: YES\n"
    issues = scan_transcript(transcript)
    assert "NULL cipher used" in issues
    assert "Compression enabled (CRIME attack risk)" in issues


def test_leaf_certificate_is_first_pem_block():
    pem = extract_leaf_certificate(CLEAN.replace(PEM, PEM + SECOND_PEM))
    assert pem.startswith("-----BEGIN CERTIFICATE-----")
    assert "MIIBszCC" in pem
    assert "MIIBtDCC" not in pem
    assert extract_leaf_certificate(NO_CIPHER) is None


@pytest.mark.parametrize("subject,cn", [
    ("CN=example.com,O=Example Inc,C=US", "example.com"),
    ("O=Example Inc,CN=www.example.com", "www.example.com"),
    ("/C=US/O=Example/CN=legacy.example.com", "legacy.example.com"),
    ("O=No Common Name", None),
])
def test_common_name_from_subject(subject, cn):
    assert common_name_from_subject(subject) == cn


def test_parse_x509_fields_from_openssl_output():
    text = (
        "subject=CN=example.com,O=Example Inc\n"
        "notBefore=Jan  1 00:00:00 2024 GMT\n"
        "notAfter=Dec 31 23:59:59 2024 GMT\n"
    )
    cert = parse_x509_fields(text)
    assert cert.subject == "CN=example.com,O=Example Inc"
    assert cert.common_name == "example.com"
    assert cert.not_before == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert cert.not_after == datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def test_parse_x509_fields_rejects_incomplete_output():
    with pytest.raises(CertificateParseError):
        parse_x509_fields("subject=CN=example.com\n")
    with pytest.raises(CertificateParseError):
        parse_x509_fields("notBefore=yesterday\nnotAfter=tomorrow\n")


# ------------------------------
# OpenSSL CLI provider against stand-in tools
# ------------------------------

posix_only = pytest.mark.skipif(os.name != "posix", reason="stand-in tools are /bin/sh scripts")

X509_OUTPUT = (
    'echo "subject=CN=93.184.216.34,O=Example"\n'
    'echo "notBefore=Jan  1 00:00:00 2024 GMT"\n'
    'echo "notAfter=Jan  1 00:00:00 2099 GMT"\n'
)


def write_tool(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


def healthy_openssl(tmp_path):
    transcript = tmp_path / "transcript.txt"
    transcript.write_text(CLEAN)
    argv_log = tmp_path / "argv.txt"
    return write_tool(tmp_path, "openssl", (
        f'echo "$@" >> "{argv_log}"\n'
        'if [ "$1" = "x509" ]; then\n'
        '  cat > /dev/null\n'
        + X509_OUTPUT +
        '  exit 0\n'
        'fi\n'
        f'cat "{transcript}"\n'
    )), argv_log


@posix_only
def test_openssl_handshake_and_certificate_parse(tmp_path):
    binary, argv_log = healthy_openssl(tmp_path)
    diagnostics = OpenSslDiagnostics(binary)

    transcript = diagnostics.handshake(HOST, timeout=5)
    result = audit_transcript(HOST, transcript, diagnostics, now=NOW)

    assert result.grade == "A+"
    assert result.cert_valid_from == "2024-01-01T00:00:00+00:00"
    assert result.cert_valid_to == "2099-01-01T00:00:00+00:00"
    calls = argv_log.read_text().splitlines()
    assert calls[0] == f"s_client -connect {HOST}:443 -servername {HOST}"
    assert calls[1].startswith("x509 -noout -subject -startdate -enddate")


@posix_only
def test_openssl_timeout_becomes_handshake_error(tmp_path):
    diagnostics = OpenSslDiagnostics(write_tool(tmp_path, "openssl", "exec sleep 10\n"))
    with pytest.raises(TlsProbeError) as excinfo:
        diagnostics.handshake(HOST, timeout=1)
    assert "timeout" in str(excinfo.value)


@posix_only
def test_openssl_nonzero_exit_becomes_handshake_error(tmp_path):
    diagnostics = OpenSslDiagnostics(write_tool(tmp_path, "openssl", (
        'echo "connect:errno=111" >&2\n'
        "exit 1\n"
    )))
    with pytest.raises(TlsProbeError) as excinfo:
        diagnostics.handshake(HOST, timeout=5)
    assert str(excinfo.value) == "s_client exited 1: connect:errno=111"


def test_missing_openssl_binary_becomes_handshake_error(tmp_path):
    diagnostics = OpenSslDiagnostics(str(tmp_path / "no-such-openssl"))
    with pytest.raises(TlsProbeError) as excinfo:
        diagnostics.handshake(HOST, timeout=5)
    assert "exec_failed" in str(excinfo.value)


@posix_only
def test_failing_x509_becomes_certificate_parse_error(tmp_path):
    diagnostics = OpenSslDiagnostics(write_tool(tmp_path, "openssl", (
        "cat > /dev/null\n"
        'echo "unable to load certificate" >&2\n'
        "exit 1\n"
    )))
    with pytest.raises(CertificateParseError) as excinfo:
        diagnostics.parse_certificate(PEM)
    assert "unable to load certificate" in str(excinfo.value)

    result = audit_transcript(HOST, CLEAN, diagnostics, now=NOW)
    assert result.issues == ["Error parsing certificate"]


@posix_only
def test_cli_prints_result_and_exits_zero(tmp_path, capsys):
    binary, _ = healthy_openssl(tmp_path)
    assert main([HOST, "--openssl", binary, "--timeout", "5"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["host"] == HOST
    assert out["grade"] == "A+"
    assert out["issues"] == []


@posix_only
def test_cli_reports_handshake_failure_with_exit_two(tmp_path, capsys):
    binary = write_tool(tmp_path, "openssl", 'echo "connect:errno=111" >&2\nexit 1\n')
    assert main([HOST, "--openssl", binary]) == 2
    out = json.loads(capsys.readouterr().out)
    assert out == {"host": HOST, "error": "s_client exited 1: connect:errno=111"}
