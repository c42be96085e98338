"""CLI 入口测试 -- python -m dgworkos.core"""

import asyncio
import sys

import pytest
from dgworkos.core import __main__ as cli
from dgworkos.core.store import create_store_group


class TestCli:
    """init-db / create-user / deactivate-user"""

    def test_create_user(self, tmp_path, monkeypatch, capsys):
        db_path = tmp_path / "cli" / "dgworkos.db"
        monkeypatch.setenv("DGWORKOS_DB_PATH", str(db_path))
        monkeypatch.setattr(
            sys,
            "argv",
            [
                "dgworkos.core",
                "create-user",
                "dir-one",
                "Director One",
                "director",
                "dg@example.gy",
            ],
        )

        cli.main()

        assert "dir-one" in capsys.readouterr().out

        async def fetch():
            group = await create_store_group(str(db_path))
            try:
                return await group.user_store.get_user("dir-one")
            finally:
                await group.close()

        user = asyncio.run(fetch())
        assert user is not None
        assert user.is_decider
        assert user.email == "dg@example.gy"

    def test_unknown_role_exits(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DGWORKOS_DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setattr(sys, "argv", ["dgworkos.core", "create-user", "u", "U", "king"])
        with pytest.raises(SystemExit):
            cli.main()

    def test_init_db(self, tmp_path, monkeypatch):
        db_path = tmp_path / "init" / "dgworkos.db"
        monkeypatch.setenv("DGWORKOS_DB_PATH", str(db_path))
        monkeypatch.setattr(sys, "argv", ["dgworkos.core", "init-db"])
        cli.main()
        assert db_path.exists()

    def test_deactivate_and_reactivate_user(self, tmp_path, monkeypatch, capsys):
        db_path = tmp_path / "toggle.db"
        monkeypatch.setenv("DGWORKOS_DB_PATH", str(db_path))
        monkeypatch.setattr(
            sys, "argv", ["dgworkos.core", "create-user", "mgr-1", "Manager One", "supervisor"]
        )
        cli.main()

        async def fetch():
            group = await create_store_group(str(db_path))
            try:
                return await group.user_store.get_user("mgr-1")
            finally:
                await group.close()

        monkeypatch.setattr(sys, "argv", ["dgworkos.core", "deactivate-user", "mgr-1"])
        cli.main()
        assert asyncio.run(fetch()).is_active is False

        monkeypatch.setattr(sys, "argv", ["dgworkos.core", "activate-user", "mgr-1"])
        cli.main()
        assert asyncio.run(fetch()).is_active is True
        assert "mgr-1" in capsys.readouterr().out

    def test_deactivate_unknown_user_exits(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DGWORKOS_DB_PATH", str(tmp_path / "none.db"))
        monkeypatch.setattr(sys, "argv", ["dgworkos.core", "deactivate-user", "ghost"])
        with pytest.raises(SystemExit):
            cli.main()
