import pytest

from conftest import NEW_PASS, PASS, CannedPrompt, files
from jpm.engine import CommandEngine
from jpm.errors import (
    AlreadyInitializedError,
    EntryExistsError,
    IncorrectPassphraseError,
    InvalidNameError,
    InvalidOptionError,
    JpmError,
    MissingKeysError,
    MissingSignatureError,
    NotFoundError,
    VerificationFailedError,
)


def test_commands_need_keys(make_engine):
    engine = make_engine(PASS)
    for call in (engine.ls, engine.verify, lambda: engine.find("x"), lambda: engine.show("x")):
        with pytest.raises(MissingKeysError):
            call()


def test_init_lays_out_root(make_engine, cfg):
    make_engine(PASS).init()
    assert files(cfg.private_dir) == ["encrypt.key", "encrypt.pub", "signify.pub", "signify.sec"]
    assert files(cfg.store_dir) == []
    assert files(cfg.tmpstore_dir) == []


def test_init_twice_asks_nothing(initialized, make_engine):
    engine = make_engine()
    with pytest.raises(AlreadyInitializedError):
        engine.init()
    assert engine.prompt.asked == []


def test_add_with_wrong_passphrase_leaves_unsigned_entry(initialized, make_engine, capsys):
    cfg = initialized
    make_engine().staging.write("Foo", b"bar\nbaz")
    with pytest.raises(IncorrectPassphraseError):
        make_engine("fiii").add("Foo")
    assert files(cfg.store_dir) == ["Foo"]
    assert files(cfg.tmpstore_dir) == []
    assert capsys.readouterr().out.startswith(f"Signing {cfg.store_dir / 'Foo'} with {cfg.signify_sec}")

    make_engine(PASS).sign("Foo")
    assert files(cfg.store_dir) == ["Foo", "Foo.sig"]
    make_engine().verify()


def test_add_requires_staged_plaintext(initialized, make_engine):
    with pytest.raises(NotFoundError):
        make_engine(PASS).add("Foo")
    assert files(initialized.store_dir) == []


def test_add_composes_with_editor(initialized, make_engine):
    def editor(path):
        path.write_bytes(b"typed\n")

    make_engine(PASS, editor=editor).add("Foo", compose=True)
    assert files(initialized.tmpstore_dir) == []
    assert make_engine(PASS).keyring.decrypt((initialized.store_dir / "Foo").read_bytes(), PASS) == b"typed\n"


def test_add_editor_writes_nothing(initialized, make_engine):
    with pytest.raises(NotFoundError):
        make_engine(PASS, editor=lambda path: None).add("Foo", compose=True)
    assert files(initialized.store_dir) == []


def test_add_invalid_name(initialized, make_engine):
    with pytest.raises(InvalidNameError):
        make_engine(PASS).add("Bar/Baz")
    assert files(initialized.store_dir) == []
    assert files(initialized.tmpstore_dir) == []


def test_add_existing(add_entry, make_engine, initialized):
    add_entry("Foo", b"one")
    make_engine().staging.write("Foo", b"two")
    with pytest.raises(EntryExistsError):
        make_engine(PASS).add("Foo")
    assert files(initialized.tmpstore_dir) == []


def test_add_without_keys_discards_staged(make_engine, cfg):
    make_engine().staging.write("Foo", b"bar")
    with pytest.raises(MissingKeysError):
        make_engine(PASS).add("Foo")
    assert files(cfg.tmpstore_dir) == []


def test_sign_missing_entry(initialized, make_engine):
    with pytest.raises(NotFoundError):
        make_engine(PASS).sign("Foo")


@pytest.fixture
def watched_engine(cfg, backend, capsys):
    """Engine whose passphrase prompt records what was printed before it was asked."""
    seen = []

    class Watching(CannedPrompt):
        def passphrase(self, prompt, confirm=False):
            seen.append(capsys.readouterr().out)
            return super().passphrase(prompt, confirm)

    def _make(*answers):
        prompt = Watching(answers)
        return CommandEngine(cfg, backend, prompt, prompt)

    _make.seen = seen
    return _make


def test_sign_announces_before_asking(add_entry, watched_engine, initialized, capsys):
    add_entry("Foo", b"bar")
    capsys.readouterr()
    watched_engine(PASS).sign("Foo")
    assert watched_engine.seen == [f"Signing {initialized.store_dir / 'Foo'} with {initialized.signify_sec}\n"]


def test_add_announces_before_asking(initialized, watched_engine, make_engine):
    make_engine().staging.write("Foo", b"bar")
    watched_engine(PASS).add("Foo")
    assert watched_engine.seen == [f"Signing {initialized.store_dir / 'Foo'} with {initialized.signify_sec}\n"]


@pytest.mark.parametrize("call", [
    lambda engine: engine.rm("../private/encrypt.key"),
    lambda engine: engine.sign("../private/encrypt.key"),
    lambda engine: engine.mv("../private/encrypt.key", "Stolen"),
    lambda engine: engine.mv("Foo", "../private/encrypt.key"),
])
def test_names_cannot_leave_the_store(add_entry, make_engine, initialized, call):
    add_entry("Foo", b"bar")
    private = sorted(initialized.private_dir.iterdir())
    with pytest.raises(InvalidNameError):
        call(make_engine(PASS))
    assert sorted(initialized.private_dir.iterdir()) == private
    assert files(initialized.store_dir) == ["Foo", "Foo.sig"]


def test_verify_reports_each_failure(add_entry, make_engine, initialized, capsys):
    add_entry("Good", b"1")
    add_entry("Tampered", b"2")
    make_engine().staging.write("Unsigned", b"3")
    with pytest.raises(IncorrectPassphraseError):
        make_engine("wrong").add("Unsigned")
    (initialized.store_dir / "Tampered").write_bytes(b"FAKE:evil")
    capsys.readouterr()

    with pytest.raises(VerificationFailedError) as excinfo:
        make_engine().verify()
    err = capsys.readouterr().err
    assert "Tampered: signature verification failed" in err
    assert "Unsigned: missing signature" in err
    assert "Good" not in err
    assert "2 of 3" in excinfo.value.format_message()


def test_verify_only_unsigned(add_entry, make_engine):
    make_engine().staging.write("Foo", b"x")
    with pytest.raises(IncorrectPassphraseError):
        make_engine("wrong").add("Foo")
    with pytest.raises(MissingSignatureError):
        make_engine().verify()


def test_verify_empty_store(initialized, make_engine):
    assert make_engine().verify() == 0


def test_show_disambiguates(add_entry, make_engine, capsysbinary):
    add_entry("Bar", b"bar")
    add_entry("Baz", b"baz\n")
    capsysbinary.readouterr()
    assert make_engine("2", PASS).show("Ba", echo_name=True) == "Baz"
    assert capsysbinary.readouterr().out == b"1) Bar\n2) Baz\nBaz\nbaz\n"


@pytest.mark.parametrize("answer", ["0", "3", "two"])
def test_show_invalid_choice(add_entry, make_engine, answer):
    add_entry("Bar", b"bar")
    add_entry("Baz", b"baz")
    with pytest.raises(InvalidOptionError):
        make_engine(answer, PASS).show("Ba")


def test_show_cancel(add_entry, make_engine, capsysbinary):
    add_entry("Bar", b"bar")
    add_entry("Baz", b"baz")
    capsysbinary.readouterr()
    engine = make_engine("", PASS)
    assert engine.show("Ba") is None
    assert capsysbinary.readouterr().out == b"1) Bar\n2) Baz\n"
    assert engine.prompt.answers == [PASS]


def test_show_no_match(add_entry, make_engine):
    add_entry("Foo", b"x")
    with pytest.raises(NotFoundError):
        make_engine(PASS).show("nope")


def test_edit_reseals(add_entry, make_engine, initialized):
    add_entry("Foo", b"old")

    def editor(path):
        assert path.read_bytes() == b"old"
        path.write_bytes(b"new\nline")

    assert make_engine(PASS, editor=editor).edit("Foo") == "Foo"
    engine = make_engine(PASS)
    assert engine.keyring.decrypt(engine.store.read("Foo"), PASS) == b"new\nline"
    assert files(initialized.store_dir) == ["Foo", "Foo.sig"]
    assert files(initialized.tmpstore_dir) == []
    engine.verify()


def test_edit_failure_keeps_entry(add_entry, make_engine, initialized):
    add_entry("Foo", b"old")
    before = (initialized.store_dir / "Foo").read_bytes()

    def editor(path):
        raise RuntimeError("editor crashed")

    with pytest.raises(RuntimeError):
        make_engine(PASS, editor=editor).edit("Foo")
    assert (initialized.store_dir / "Foo").read_bytes() == before
    assert files(initialized.tmpstore_dir) == []


def test_mv_and_rm(add_entry, make_engine, initialized):
    add_entry("Foo", b"x")
    make_engine().mv("Foo", "Baz")
    assert files(initialized.store_dir) == ["Baz", "Baz.sig"]
    with pytest.raises(InvalidNameError):
        make_engine().mv("Baz", "a/b")
    make_engine().rm("Baz")
    assert files(initialized.store_dir) == []


def test_ls_and_find(add_entry, make_engine):
    add_entry("Foo", b"bar")
    add_entry("Bar", b"x")
    engine = make_engine()
    assert engine.ls() == ["Bar", "Foo"]
    assert engine.find("bar") == ["Bar"]
    assert engine.find("f.o") == ["Foo"]
    assert engine.find("f.o", ignore_case=False) == []


def test_rotate(add_entry, make_engine):
    add_entry("Foo", b"bar\nbaz")
    engine = make_engine(PASS, NEW_PASS)
    assert engine.rotate() == 1
    assert engine.prompt.asked == ["Old passphrase", "New passphrase"]
    assert engine.keyring.decrypt(engine.store.read("Foo"), NEW_PASS) == b"bar\nbaz"


def test_export_matches_show(add_entry, make_engine, tmp_path, capsysbinary):
    add_entry("Foo", b"bar\nbaz")
    add_entry("Crlf", b"a\r\nb\r\n")
    make_engine().staging.write("Unsigned", b"skip me")
    with pytest.raises(IncorrectPassphraseError):
        make_engine("wrong").add("Unsigned")

    out = tmp_path / "export"
    assert make_engine(PASS).export(out) == 2
    assert files(out) == ["Crlf", "Foo"]
    for name in ("Foo", "Crlf"):
        capsysbinary.readouterr()
        make_engine(PASS).show(name)
        assert (out / name).read_bytes() == capsysbinary.readouterr().out


def test_clip_first_line(add_entry, make_engine):
    add_entry("Foo", b"s3cret\r\nuser: me\n")
    copied = []
    assert make_engine(PASS, clipboard=copied.append).clip("Foo") == "Foo"
    assert copied == ["s3cret"]


def test_clip_binary_first_line(add_entry, make_engine):
    add_entry("Foo", b"\xff\xfe\nrest")
    copied = []
    with pytest.raises(JpmError, match="not UTF-8"):
        make_engine(PASS, clipboard=copied.append).clip("Foo")
    assert copied == []


def test_export_skips_bad_signature(add_entry, make_engine, initialized, tmp_path):
    add_entry("Foo", b"foo")
    add_entry("Bar", b"bar")
    (initialized.store_dir / "Bar").write_bytes(b"FAKE:evil")
    out = tmp_path / "export"
    assert make_engine(PASS).export(out) == 1
    assert files(out) == ["Foo"]
