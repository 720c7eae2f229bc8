import pytest

from overwatch.commands import (
    CopyAll,
    CopyFile,
    ExtractFileTo,
    MakeDir,
    MoveAll,
    MoveFile,
    SqlInsert,
)
from overwatch.errors import ConfigurationError, UnsupportedArchiveType
from overwatch.events import IoEvent


def make_event(filename="a.txt", parent="/data/in"):
    return IoEvent(
        event_type="add",
        full_path=f"{parent}/{filename}",
        parent_path=parent,
        parent_name=parent.rsplit("/", 1)[-1],
        filename=filename,
        uuid="01TESTUUID",
    )


class TestShellGenerators:

    def test_copy_file(self):
        event = make_event()
        commands = CopyFile({"target": "/out/{{ioEvent.filename}}"}).generate(event)
        assert commands == ["yes | cp /data/in/a.txt /out/a.txt"]
        assert event.context["copyFile"] == {"target": "/out/a.txt"}

    def test_move_file(self):
        event = make_event()
        assert MoveFile({"target": "/out"}).generate(event) == ["mv /data/in/a.txt /out"]
        assert event.context["moveFile"]["target"] == "/out"

    def test_copy_all_uses_parent_directory(self):
        event = make_event()
        assert CopyAll({"target": "/out"}).generate(event) == ["yes | cp -R /data/in/* /out"]

    def test_move_all_uses_parent_directory(self):
        event = make_event()
        assert MoveAll({"target": "/out"}).generate(event) == ["mv /data/in/* /out"]
        assert event.context["moveAll"]["target"] == "/out"

    def test_mkdir(self):
        event = make_event()
        event.context["timestamp"] = "20240101_00000000"
        commands = MakeDir({"target": "/work/{{ioEvent.context.timestamp}}"}).generate(event)
        assert commands == ["mkdir -p /work/20240101_00000000"]
        assert event.context["mkdir"]["target"] == "/work/20240101_00000000"

    def test_paths_with_spaces_are_quoted(self):
        event = make_event("my file.txt", parent="/data/my in")
        commands = CopyFile({"target": "/out/{{ioEvent.filename}}"}).generate(event)
        assert commands == ["yes | cp '/data/my in/my file.txt' /out/'my file.txt'"]
        # the context keeps the unquoted value
        assert event.context["copyFile"]["target"] == "/out/my file.txt"

    def test_template_text_is_not_quoted(self):
        event = make_event("my file.txt")
        event.context["timestamp"] = "20240101_00000000"
        generator = MakeDir({"target": "~/out/$BATCH/{{ioEvent.context.timestamp}}_{{ioEvent.filename}}"})
        commands = generator.generate(event)
        assert commands == ["mkdir -p ~/out/$BATCH/20240101_00000000_'my file.txt'"]
        assert event.context["mkdir"]["target"] == "~/out/$BATCH/20240101_00000000_my file.txt"

    def test_substituted_value_cannot_break_out(self):
        event = make_event("x; rm -rf y")
        commands = MoveFile({"target": "/out/{{ioEvent.filename}}"}).generate(event)
        assert commands == ["mv '/data/in/x; rm -rf y' /out/'x; rm -rf y'"]

    def test_target_is_required(self):
        with pytest.raises(ConfigurationError):
            CopyFile({})


class TestExtractFileTo:

    def setup_method(self):
        self.generator = ExtractFileTo({"target": "/x"})

    @pytest.mark.parametrize("filename", ["archive.TGZ", "archive.gz", "backup.tar.gz"])
    def test_tar_family(self, filename):
        commands = self.generator.generate(make_event(filename))
        assert commands == [f"tar -xvf /data/in/{filename} -C /x"]

    @pytest.mark.parametrize("filename", ["data.zip", "DATA.ZIP"])
    def test_zip_family(self, filename):
        commands = self.generator.generate(make_event(filename))
        assert commands == [f"unzip -o /data/in/{filename} -d /x"]

    def test_unsupported_type_fails_before_any_output(self):
        event = make_event("data.rar")
        with pytest.raises(UnsupportedArchiveType) as exc:
            self.generator.generate(event)
        assert exc.value.filename == "data.rar"
        assert "extractFileTo" not in event.context

    def test_target_template_text_reaches_shell_raw(self):
        generator = ExtractFileTo({"target": "~/unpacked/{{ioEvent.filename}}"})
        commands = generator.generate(make_event("my data.zip"))
        assert commands == ["unzip -o '/data/in/my data.zip' -d ~/unpacked/'my data.zip'"]

    def test_records_target(self):
        event = make_event("data.zip")
        self.generator.generate(event)
        assert event.context["extractFileTo"] == {"target": "/x"}


class TestSqlInsert:

    def test_insert_statement(self):
        generator = SqlInsert({"table": "t", "columns": ["a", "b"],
                               "values": ["{{ioEvent.filename}}", "lit"]})
        assert generator.generate(make_event("x.txt")) == [
            "INSERT INTO t (a,b) VALUES ('x.txt','lit');"
        ]

    def test_embedded_quotes_are_escaped(self):
        generator = SqlInsert({"table": "t", "columns": ["name"], "values": ["{{ioEvent.filename}}"]})
        [statement] = generator.generate(make_event("o'brien.txt"))
        assert statement == "INSERT INTO t (name) VALUES ('o\\'brien.txt');"

    def test_unknown_placeholder_inserts_empty_string(self):
        generator = SqlInsert({"table": "t", "columns": ["a"], "values": ["{{ioEvent.nothing}}"]})
        assert generator.generate(make_event()) == ["INSERT INTO t (a) VALUES ('');"]

    def test_mismatched_lengths_rejected_at_build(self):
        with pytest.raises(ConfigurationError):
            SqlInsert({"table": "t", "columns": ["a", "b"], "values": ["1"]})

    def test_table_required(self):
        with pytest.raises(ConfigurationError):
            SqlInsert({"columns": ["a"], "values": ["1"]})

    def test_identifiers_validated(self):
        with pytest.raises(ConfigurationError):
            SqlInsert({"table": "t; DROP TABLE x", "columns": ["a"], "values": ["1"]})
        with pytest.raises(ConfigurationError):
            SqlInsert({"table": "t", "columns": ["a b"], "values": ["1"]})

    def test_schema_qualified_table_allowed(self):
        generator = SqlInsert({"table": "db.t", "columns": ["a"], "values": ["1"]})
        assert generator.generate(make_event()) == ["INSERT INTO db.t (a) VALUES ('1');"]
