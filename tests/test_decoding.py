import pytest

from mergeconfig.decoding import decode_current, decode_legacy
from mergeconfig.errors import ConfigDecodeError

V1 = b"""
version: 1
update:
  whitelist:
    labels: ["update me"]
merge:
  whitelist:
    labels: ["merge when ready"]
    comment_substrings: ["==MERGE=="]
  blacklist:
    labels: ["do not merge"]
  method: squash
  options:
    squash: [summarize-commits]
  delete_after_merge: true
"""


def test_decode_current_full_document():
    cfg = decode_current(V1)
    assert cfg.version == 1
    assert cfg.update.whitelist.labels == ("update me",)
    assert cfg.merge.whitelist.comment_substrings == ("==MERGE==",)
    assert cfg.merge.blacklist.labels == ("do not merge",)
    assert cfg.merge.method == "squash"
    assert cfg.merge.options["squash"] == {"summarize-commits"}
    assert cfg.merge.delete_after_merge is True


def test_decode_current_minimal_document_uses_defaults():
    cfg = decode_current(b"version: 1\n")
    assert cfg.merge.method == "merge"
    assert cfg.merge.whitelist.enabled is False
    assert cfg.merge.delete_after_merge is False


def test_decode_current_keys_without_values_use_defaults():
    cfg = decode_current(
        b"version: 1\n"
        b"update:\n"
        b"merge:\n"
        b"  method: squash\n"
        b"  whitelist:\n"
        b"    labels:\n"
        b"    comment_substrings: [\"==GO==\"]\n"
        b"  blacklist:\n"
        b"  options:\n"
        b"    squash:\n"
    )
    assert cfg.update.whitelist.enabled is False
    assert cfg.merge.method == "squash"
    assert cfg.merge.whitelist.labels == ()
    assert cfg.merge.whitelist.comment_substrings == ("==GO==",)
    assert cfg.merge.blacklist.enabled is False
    assert cfg.merge.options == {"squash": frozenset()}


def test_decode_current_version_without_value_is_rejected():
    with pytest.raises(ConfigDecodeError):
        decode_current(b"version:\n")


def test_decode_legacy_keys_without_values_use_defaults():
    legacy = decode_legacy(b"mode: body\nstrategy:\ndelete_after_merge:\n")
    assert legacy.mode == "body"
    assert legacy.strategy == "merge"
    assert legacy.delete_after_merge is False


def test_decode_current_rejects_unknown_field():
    with pytest.raises(ConfigDecodeError):
        decode_current(V1 + b"surprise: true\n")


def test_decode_current_rejects_nested_typo():
    with pytest.raises(ConfigDecodeError):
        decode_current(b"version: 1\nmerge:\n  delete_afer_merge: true\n")


@pytest.mark.parametrize("doc", [b"version: 2\n", b"version: 0\n", b"version: '1'\n", b"update: {}\n"])
def test_decode_current_rejects_bad_version(doc):
    with pytest.raises(ConfigDecodeError):
        decode_current(doc)


def test_decode_current_rejects_unknown_method_and_option():
    with pytest.raises(ConfigDecodeError):
        decode_current(b"version: 1\nmerge:\n  method: fast-forward\n")
    with pytest.raises(ConfigDecodeError):
        decode_current(b"version: 1\nmerge:\n  options:\n    squash: [shout]\n")


def test_decode_rejects_duplicate_keys():
    with pytest.raises(ConfigDecodeError):
        decode_current(b"version: 1\nversion: 1\n")


@pytest.mark.parametrize("doc", [b"- version\n", b"just text\n", b"version: [1\n", b"\xff\xfe"])
def test_decode_rejects_malformed_documents(doc):
    with pytest.raises(ConfigDecodeError):
        decode_current(doc)


def test_decode_legacy():
    legacy = decode_legacy(b"mode: whitelist\nstrategy: squash\ndelete_after_merge: true\n")
    assert legacy.mode == "whitelist"
    assert legacy.strategy == "squash"
    assert legacy.delete_after_merge is True


def test_decode_legacy_rejects_v1_document():
    with pytest.raises(ConfigDecodeError):
        decode_legacy(V1)


def test_decode_legacy_keeps_unknown_mode():
    assert decode_legacy(b"mode: sometimes\n").mode == "sometimes"
