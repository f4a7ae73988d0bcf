"""Tests for environment variable sources"""


class TestEnvironmentChain:
    def test_first_non_empty_value_wins(self):
        from taskmaster.config.env import EnvironmentChain, EnvSource

        chain = EnvironmentChain([
            EnvSource("session", {"KEY": ""}),
            EnvSource("process", {"KEY": "from-process"}),
            EnvSource("file", {"KEY": "from-file", "OTHER": "x"}),
        ])

        assert chain.get("KEY") == "from-process"
        assert chain.source_of("KEY") == "process"
        assert chain.get("OTHER") == "x"
        assert chain.get("MISSING") is None
        assert chain.source_of("MISSING") is None

    def test_merged_honors_precedence(self):
        from taskmaster.config.env import EnvironmentChain, EnvSource

        chain = EnvironmentChain([
            EnvSource("process", {"A": "1"}),
            EnvSource("file", {"A": "2", "B": "3"}),
        ])

        assert chain.merged() == {"A": "1", "B": "3"}

    def test_none_sources_are_dropped(self):
        from taskmaster.config.env import EnvironmentChain, EnvSource

        chain = EnvironmentChain([EnvSource("process", {"A": "1"}), None])

        assert len(chain.sources) == 1

    def test_prepend_does_not_mutate(self):
        from taskmaster.config.env import EnvironmentChain, EnvSource

        base = EnvironmentChain([EnvSource("process", {"A": "1"})])
        overlaid = base.prepend(EnvSource("session", {"A": "2"}))

        assert overlaid.get("A") == "2"
        assert base.get("A") == "1"


class TestSources:
    def test_session_env_from_object_and_mapping(self):
        from taskmaster.config.env import session_env
        from taskmaster.provider.types import Session

        assert session_env(Session(env={"A": "1"})).get("A") == "1"
        assert session_env({"env": {"A": "2"}}).get("A") == "2"
        assert session_env(None).get("A") is None

    def test_process_env_uses_given_mapping(self, monkeypatch):
        from taskmaster.config.env import process_env

        monkeypatch.setenv("TASKMASTER_TEST_VAR", "real")

        assert process_env({"X": "y"}).get("TASKMASTER_TEST_VAR") is None
        assert process_env().get("TASKMASTER_TEST_VAR") == "real"

    def test_dotenv_file(self, temp_dir):
        from taskmaster.config.env import dotenv_file

        path = temp_dir / ".env"
        path.write_text("# comment\nOPENAI_API_KEY=sk-test\nQUOTED=\"with spaces\"\n")

        source = dotenv_file(path)

        assert source.get("OPENAI_API_KEY") == "sk-test"
        assert source.get("QUOTED") == "with spaces"
        assert source.name.startswith("file:")

    def test_missing_dotenv_file(self, temp_dir):
        from taskmaster.config.env import dotenv_file

        assert dotenv_file(temp_dir / ".env") is None
