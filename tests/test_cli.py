"""
Tests for the argus command line: exit codes and printed output.
"""

import json
from unittest.mock import patch

from argus import cli
from argus.cache import SnapshotCache

from conftest import SAMPLE_FILES, ScriptedClient


class TestLookupCommands:
    """Test the commands that never call a provider."""

    def test_search(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)

        assert cli.main(["search", "--snapshot", path, "--pattern", "export class"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["count"] == 1
        assert out["matches"][0]["line"] == "export class Client {}"

    def test_imports(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)

        assert cli.main(["imports", "--snapshot", path, "--file", "src/util.ts"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["dependencies"] == ["src/api/types.ts"]

    def test_symbol(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)

        assert cli.main(["symbol", "--snapshot", path, "--name", "Client"]) == 0

        assert json.loads(capsys.readouterr().out)["files"] == ["src/api/index.ts"]

    def test_context_for_unknown_file_fails(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)

        assert cli.main(["context", "--snapshot", path, "--file", "nope.ts", "--line", "1"]) == 1
        assert "nope.ts" in capsys.readouterr().err

    def test_missing_snapshot_reports_error(self, tmp_path, capsys):
        missing = str(tmp_path / "missing.txt")

        assert cli.main(["search", "--snapshot", missing, "--pattern", "x"]) == 1
        assert capsys.readouterr().err.startswith("[argus] error:")


class TestEnrich:
    """Test appending METADATA blocks to a snapshot."""

    def test_enrich_appends_blocks_once(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)

        assert cli.main(["enrich", "--snapshot", path]) == 0

        document = SnapshotCache().load(path)
        assert list(document.metadata_blocks) == [
            "IMPORT GRAPH",
            "EXPORT INDEX",
            "FILE EXPORTS",
            "WHO IMPORTS WHOM",
        ]
        assert document.file_count == len(SAMPLE_FILES)
        assert "  → src/api/types.ts" in document.metadata_text("IMPORT GRAPH")
        readme = document.file_lines("README.md")
        assert "export function notParsed() {}" in readme
        assert not any(line.startswith("METADATA") or line == "=" * 80 for line in readme)

        assert cli.main(["enrich", "--snapshot", path]) == 1
        assert "already has METADATA" in capsys.readouterr().err


class TestAsk:
    """Test the analysis command with the provider replaced."""

    def _patch_client(self, responses):
        client = ScriptedClient(responses, fallback="no idea")
        return client, patch.object(cli, "LiteLLMClient", lambda *args, **kwargs: client)

    def test_ask_prints_answer(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)
        client, patcher = self._patch_client(['(count (grep "export"))', "<<<FINAL>>>Lots<<<END>>>"])

        with patcher:
            code = cli.main(["ask", "--snapshot", path, "--question", "how many exports"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "Lots"
        assert len(client.calls) == 2

    def test_ask_json_and_failure_exit_code(self, write_snapshot, capsys):
        path = write_snapshot(SAMPLE_FILES)
        _, patcher = self._patch_client([])

        with patcher:
            code = cli.main(
                ["ask", "--snapshot", path, "--question", "why", "--max-turns", "2", "--json"]
            )

        assert code == 1
        out = json.loads(capsys.readouterr().out)
        assert out["success"] is False
        assert out["error"] == "Max turns reached"
        assert out["turns"] == 2
