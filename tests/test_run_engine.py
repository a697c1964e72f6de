"""
Tests for the engine runner: node wiring, genesis and CLI flags.
"""

import os
from unittest.mock import patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from run_engine import StakeFlowNode, build_config, parse_args
from stakeflow_core.config import StakeFlowConfig
from stakeflow_core.ticks import ManualTicks


def _config(**genesis) -> StakeFlowConfig:
    cfg = StakeFlowConfig()
    cfg.api.enabled = False
    cfg.engine.start_tick = 1
    cfg.engine.check_invariants = True
    cfg.token.genesis = dict(genesis)
    return cfg


class TestNode:
    def test_genesis_funds_wallets(self):
        node = StakeFlowNode(_config(sfAlice=500, sfBob=300), tick_source=ManualTicks(1))
        assert node.token.balance_of("sfAlice") == 500
        assert node.token.total_supply == 800
        assert node.api is None

    def test_genesis_over_cap_rejected(self):
        cfg = _config(sfAlice=500)
        cfg.token.max_supply = 100
        with pytest.raises(ValueError, match="sfAlice"):
            StakeFlowNode(cfg, tick_source=ManualTicks(1))

    def test_engine_wired_to_token(self):
        ticks = ManualTicks(1)
        node = StakeFlowNode(_config(sfAlice=500), tick_source=ticks)
        node.token.approve("sfAlice", "sfStakePool", 500)
        node.engine.deposit("sfAlice", 100)
        ticks.set(11)
        node.engine.refresh()
        assert node.custody.balance == 100 + 10 * 1000
        assert node.token.balance_of("sfTreasury") == 10 * 8000
        status = node.status()
        assert status["symbol"] == "SFT"
        assert status["custody_balance"] == 10_100
        assert status["token_supply"] == 500 + 10 * 1000 + 10 * 8000
        assert status["tick"] == 11

    def test_api_created_when_enabled(self):
        cfg = _config()
        cfg.api.enabled = True
        cfg.api.port = 9999
        node = StakeFlowNode(cfg, tick_source=ManualTicks(0))
        assert node.api is not None
        assert node.api.port == 9999
        assert node.api.token is node.token

    def test_default_tick_source_is_wall_clock(self):
        from stakeflow_core.ticks import WallClockTicks

        node = StakeFlowNode(_config())
        assert isinstance(node.tick_source, WallClockTicks)

    @pytest.mark.asyncio
    async def test_start_stop_without_api(self, caplog):
        node = StakeFlowNode(_config(), tick_source=ManualTicks(1))
        with caplog.at_level("INFO", logger="stakeflow.node"):
            await node.start()
            await node.stop()
        messages = [r.getMessage() for r in caplog.records]
        assert any("Engine ready" in m for m in messages)
        assert any("Engine stopped" in m for m in messages)


class TestNodeAPI:
    @pytest.mark.asyncio
    async def test_deposit_over_http_from_genesis(self):
        cfg = _config(sfAlice=1_000_000)
        cfg.api.enabled = True
        node = StakeFlowNode(cfg, tick_source=ManualTicks(1))
        async with TestClient(TestServer(node.api.build_app())) as client:
            body = {"account": "sfAlice", "amount": 100, "tick": 1}
            resp = await client.post("/stake/deposit", json=body)
            assert resp.status == 402

            resp = await client.post("/token/approve", json={"account": "sfAlice", "amount": 100})
            assert resp.status == 200
            assert (await resp.json())["spender"] == "sfStakePool"

            resp = await client.post("/stake/deposit", json=body)
            assert resp.status == 200
            data = await (await client.get("/position/sfAlice?tick=11")).json()
        assert data["staked_amount"] == 100
        assert data["preview_pending"] == 10_000
        assert data["wallet_balance"] == 1_000_000 - 100
        assert node.custody.balance == 100


class TestCLI:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.port is None

    def test_flags_override_config(self):
        args = parse_args(["--host", "0.0.0.0", "--port", "9090",
                           "--log-level", "debug", "--log-format", "json",
                           "--log-file", "/tmp/sf.log"])
        cfg = build_config(args)
        assert cfg.api.host == "0.0.0.0"
        assert cfg.api.port == 9090
        assert cfg.logging.level == "DEBUG"
        assert cfg.logging.format == "json"
        assert cfg.logging.file == "/tmp/sf.log"

    def test_bad_log_format_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--log-format", "xml"])

    @patch.dict(os.environ, {"STAKEFLOW_API_PORT": "7000"}, clear=False)
    def test_flag_wins_over_env(self):
        assert build_config(parse_args([])).api.port == 7000
        assert build_config(parse_args(["--port", "7001"])).api.port == 7001
