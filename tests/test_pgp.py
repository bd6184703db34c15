import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

from sopskit.pgp import (
    GnuPGHome,
    MasterKey,
    PGPError,
    gnupg_home,
    gpg_binary,
    master_keys_from_fingerprint_string,
    new_gnupg_home,
    new_master_key_from_fingerprint,
    shorten_fingerprint,
)

FINGERPRINT = "FBC7B9E2A4F9289AC0C1D4843D16CEE4A27381B4"

FAKE_GPG = """
import os
import sys

args = sys.argv[1:]
log_path = os.environ.get("FAKE_GPG_LOG")
if log_path:
    with open(log_path, "a") as handle:
        handle.write(" ".join(args) + "\\n")
data = sys.stdin.buffer.read()
if "--import" in args:
    if data == b"bad":
        sys.stderr.write("invalid key\\n")
        sys.exit(2)
    sys.exit(0)
if "--encrypt" in args:
    if os.environ.get("FAKE_GPG_FAIL"):
        sys.stderr.write("no public key\\n")
        sys.exit(2)
    sys.stdout.write("  ARMOR:" + data.hex() + "\\n")
    sys.exit(0)
if "-d" in args:
    text = data.decode()
    if text == "EMPTY":
        sys.exit(0)
    if not text.startswith("ARMOR:"):
        sys.stderr.write("decryption failed\\n")
        sys.exit(2)
    sys.stdout.buffer.write(bytes.fromhex(text[6:]))
    sys.exit(0)
sys.exit(1)
"""


@pytest.fixture
def fake_gpg(tmp_path, monkeypatch):
    script = tmp_path / "fake-gpg"
    script.write_text(f"#!{sys.executable}\n{FAKE_GPG}")
    script.chmod(0o755)
    log_file = tmp_path / "calls.log"
    monkeypatch.setenv("SOPS_GPG_EXEC", str(script))
    monkeypatch.setenv("FAKE_GPG_LOG", str(log_file))
    monkeypatch.delenv("FAKE_GPG_FAIL", raising=False)
    return log_file


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "gnupg"
    path.mkdir()
    path.chmod(0o700)
    return GnuPGHome(str(path))


def test_shorten_fingerprint_keeps_last_16():
    assert shorten_fingerprint(FINGERPRINT) == FINGERPRINT[-16:]


def test_shorten_fingerprint_keeps_exclamation_mark():
    assert shorten_fingerprint(FINGERPRINT + "!") == FINGERPRINT[-16:] + "!"


def test_shorten_fingerprint_short_input_unchanged():
    assert shorten_fingerprint("ABCD") == "ABCD"


def test_new_master_key_strips_spaces():
    key = new_master_key_from_fingerprint("FBC7 B9E2 A4F9")
    assert key.fingerprint == "FBC7B9E2A4F9"
    assert key.encrypted_key == ""


def test_master_keys_from_fingerprint_string():
    assert master_keys_from_fingerprint_string("") == []
    keys = master_keys_from_fingerprint_string("AAA,B B")
    assert [k.fingerprint for k in keys] == ["AAA", "BB"]


def test_gpg_binary_default_and_override(monkeypatch):
    monkeypatch.delenv("SOPS_GPG_EXEC", raising=False)
    assert gpg_binary() == "gpg"
    monkeypatch.setenv("SOPS_GPG_EXEC", "/opt/bin/gpg2")
    assert gpg_binary() == "/opt/bin/gpg2"


def test_gnupg_home_preference(monkeypatch, tmp_path):
    assert gnupg_home("/custom") == "/custom"
    monkeypatch.setenv("GNUPGHOME", "/from/env")
    assert gnupg_home("") == "/from/env"
    monkeypatch.delenv("GNUPGHOME")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert gnupg_home("") == os.path.join(str(tmp_path), ".gnupg")


def test_validate_accepts_private_directory(home):
    home.validate()
    key = MasterKey(fingerprint=FINGERPRINT)
    home.apply_to_master_key(key)
    assert key.gnupg_home_dir == str(home)


@pytest.mark.parametrize(
    "path, message",
    [("", "empty GNUPGHOME path"), ("relative/dir", "absolute path")],
)
def test_validate_rejects_bad_paths(path, message):
    with pytest.raises(PGPError, match=message):
        GnuPGHome(path).validate()


def test_validate_rejects_missing(tmp_path):
    with pytest.raises(PGPError, match="does not exist"):
        GnuPGHome(str(tmp_path / "missing")).validate()


def test_validate_rejects_file(tmp_path):
    target = tmp_path / "file"
    target.write_text("x")
    with pytest.raises(PGPError, match="not a directory"):
        GnuPGHome(str(target)).validate()


def test_validate_rejects_permissions(home):
    os.chmod(str(home), 0o755)
    with pytest.raises(PGPError, match="invalid permissions"):
        home.validate()


def test_new_gnupg_home_and_cleanup():
    created = new_gnupg_home()
    created.validate()
    assert os.path.basename(str(created)).startswith("sops-gnupghome-")
    created.cleanup()
    assert not os.path.exists(str(created))


def test_apply_to_master_key(home, tmp_path):
    key = MasterKey(fingerprint=FINGERPRINT)
    GnuPGHome(str(tmp_path / "missing")).apply_to_master_key(key)
    assert key.gnupg_home_dir == ""
    home.apply_to_master_key(key)
    assert key.gnupg_home_dir == str(home)


def test_import_key_runs_gpg(fake_gpg, home):
    home.import_key(b"-----BEGIN PGP PUBLIC KEY BLOCK-----")
    calls = fake_gpg.read_text()
    assert f"--homedir {home} --batch --import" in calls


def test_import_key_failure_reports_stderr(fake_gpg, home):
    with pytest.raises(PGPError) as info:
        home.import_key(b"bad")
    assert "failed to import armored key data into GnuPG keyring" in str(info.value)
    assert "invalid key" in str(info.value)


def test_import_key_invalid_home(tmp_path):
    with pytest.raises(PGPError, match="cannot import armored key data"):
        GnuPGHome(str(tmp_path / "missing")).import_key(b"data")


def test_import_file_missing(home, tmp_path):
    with pytest.raises(PGPError, match="cannot read armored key data from file"):
        home.import_file(tmp_path / "nope.asc")


def test_encrypt_decrypt_round_trip(fake_gpg, home):
    key = MasterKey(fingerprint=FINGERPRINT)
    home.apply_to_master_key(key)
    data_key = bytes(range(32))
    key.encrypt(data_key)
    assert key.encrypted_key.startswith("ARMOR:")
    assert key.encrypted_data_key() == key.encrypted_key.encode()
    assert key.decrypt() == data_key
    calls = fake_gpg.read_text()
    assert f"--trusted-key {FINGERPRINT[-16:]}" in calls
    assert f"-r {FINGERPRINT}" in calls


def test_encrypt_failure(fake_gpg, monkeypatch):
    monkeypatch.setenv("FAKE_GPG_FAIL", "1")
    key = MasterKey(fingerprint=FINGERPRINT)
    with pytest.raises(PGPError) as info:
        key.encrypt(b"data")
    assert "could not encrypt data key with PGP key" in str(info.value)
    assert "no public key" in str(info.value)
    assert key.encrypted_key == ""


def test_decrypt_zero_bytes(fake_gpg):
    key = MasterKey(fingerprint=FINGERPRINT, encrypted_key="EMPTY")
    with pytest.raises(PGPError, match="zero bytes returned"):
        key.decrypt()


def test_decrypt_failure(fake_gpg):
    key = MasterKey(fingerprint=FINGERPRINT, encrypted_key="garbage")
    with pytest.raises(PGPError, match="decryption failed"):
        key.decrypt()


def test_encrypt_if_needed_keeps_existing(fake_gpg):
    key = MasterKey(fingerprint=FINGERPRINT, encrypted_key="existing")
    key.encrypt_if_needed(b"data")
    assert key.encrypted_key == "existing"
    fresh = MasterKey(fingerprint=FINGERPRINT)
    fresh.encrypt_if_needed(b"data")
    assert fresh.encrypted_key == "ARMOR:" + b"data".hex()


def test_set_encrypted_data_key():
    key = MasterKey(fingerprint=FINGERPRINT)
    key.set_encrypted_data_key(b"cipher")
    assert key.encrypted_key == "cipher"


def test_needs_rotation():
    old = MasterKey(
        fingerprint=FINGERPRINT,
        creation_date=datetime.now(timezone.utc) - timedelta(days=200),
    )
    assert old.needs_rotation() is True
    assert MasterKey(fingerprint=FINGERPRINT).needs_rotation() is False


def test_to_map_and_identity():
    key = MasterKey(
        fingerprint=FINGERPRINT,
        encrypted_key="enc",
        creation_date=datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )
    assert key.to_map() == {
        "fp": FINGERPRINT,
        "created_at": "2020-01-02T03:04:05Z",
        "enc": "enc",
    }
    assert key.to_string() == FINGERPRINT
    assert key.type_to_identifier() == "pgp"