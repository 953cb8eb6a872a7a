"""Tests for the multisig-forge command line."""

from __future__ import annotations

import json

import pytest

from multisig_forge.cli import build_parser, main, run_generate, run_status

OWNERS = [
    "0x1111111111111111111111111111111111111111",
    "0x2222222222222222222222222222222222222222",
]

CONFIG = {
    "roles": {
        "roles": [
            {"id": "admin", "display_name": "Admin", "level": 100, "permissions": ["execute_transaction"]},
            {"id": "member", "display_name": "Member", "level": 40, "permissions": ["execute_transaction"]},
        ],
        "member_roles": {OWNERS[0]: "admin", OWNERS[1]: "member"},
    },
    "policy": {"amount_rules": [{"threshold_eth": "1", "required_role_id": "admin"}]},
    "multisig": {"owners": OWNERS, "threshold": 2},
}


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(CONFIG), encoding="utf-8")
    return path


class TestCli:
    def test_parser(self):
        args = build_parser().parse_args(["deploy", "cfg.json", "--key", "treasury"])
        assert args.command == "deploy"
        assert args.key == "treasury"
        assert args.database_url is None

    def test_generate(self, config_file, tmp_path):
        written = run_generate(str(config_file), str(tmp_path / "out"))
        assert [p.name for p in written] == [
            "Roles.sol", "Policy.sol", "IntegratedWalletManager.sol", "metadata.json",
        ]
        assert "isOver1eth" in written[2].read_text(encoding="utf-8")

    def test_main_generate_exit_code(self, config_file, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["generate", str(config_file), "--out", str(tmp_path / "out")])
        assert exc_info.value.code == 0

    def test_main_reports_configuration_error(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["generate", str(tmp_path / "missing.json")])
        assert exc_info.value.code == 1

    def test_deploy_then_status(self, config_file, tmp_path):
        url = f"sqlite:///{tmp_path / 'records.db'}"
        with pytest.raises(SystemExit) as exc_info:
            main(["deploy", str(config_file), "--key", "treasury", "--database-url", url])
        assert exc_info.value.code == 0

        record = run_status("treasury", url)
        assert record.is_complete
        assert run_status("other", url) is None

    def test_deploy_without_multisig_section(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({k: v for k, v in CONFIG.items() if k != "multisig"}), encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main(["deploy", str(path), "--key", "k", "--database-url", f"sqlite:///{tmp_path / 'r.db'}"])
        assert exc_info.value.code == 1
