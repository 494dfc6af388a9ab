import logging

from intent_warden.config import WardenConfig, default_config_path, load_config
from intent_warden.hitl import ApprovalGate
from intent_warden.main import gate_for_config, open_warden
from intent_warden.session_state import InMemorySessionStore, PersistentSessionStore


class TestDefaults:
    def test_paths_under_orchestration(self, tmp_path):
        cfg = load_config(tmp_path)
        root = tmp_path.resolve()
        assert cfg.intents_file == root / ".orchestration" / "active_intents.yaml"
        assert cfg.session_state_path == root / ".orchestration" / "session_state.json"
        assert cfg.trace_log == root / ".orchestration" / "agent_trace.jsonl"
        assert cfg.log_file == root / ".orchestration" / "intent-warden.log"

    def test_scalar_defaults(self, tmp_path):
        cfg = load_config(tmp_path)
        assert cfg.persist_sessions is True
        assert cfg.hitl_timeout_s == 60.0
        assert cfg.hitl_mode == "prompt"
        assert cfg.contributor == {"type": "ai", "id": "unknown"}
        assert cfg.log_level == logging.INFO
        assert cfg.observer_workers == 4


class TestLoad:
    def test_values_from_yaml(self, tmp_path):
        p = default_config_path(tmp_path)
        p.parent.mkdir(parents=True)
        p.write_text(
            "paths:\n"
            "  trace_log: logs/trace.jsonl\n"
            "sessions:\n"
            "  persist: false\n"
            "hitl:\n"
            "  timeout_seconds: 5\n"
            "  mode: deny\n"
            "contributor:\n"
            "  model_id: some-model\n"
            "observers:\n"
            "  max_workers: 2\n"
            "logging:\n"
            "  level: debug\n",
            encoding="utf-8",
        )
        cfg = load_config(tmp_path)
        assert cfg.trace_log == tmp_path.resolve() / "logs" / "trace.jsonl"
        assert cfg.persist_sessions is False
        assert cfg.hitl_timeout_s == 5.0
        assert cfg.hitl_mode == "deny"
        assert cfg.contributor == {"type": "ai", "id": "some-model"}
        assert cfg.observer_workers == 2
        assert cfg.log_level == logging.DEBUG

    def test_malformed_file_falls_back(self, tmp_path, caplog):
        p = default_config_path(tmp_path)
        p.parent.mkdir(parents=True)
        p.write_text("hitl: [oops\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING):
            cfg = load_config(tmp_path)
        assert cfg.raw == {}
        assert "unreadable" in caplog.text

    def test_non_mapping_falls_back(self, tmp_path):
        p = default_config_path(tmp_path)
        p.parent.mkdir(parents=True)
        p.write_text("- a\n- b\n", encoding="utf-8")
        assert load_config(tmp_path).raw == {}

    def test_explicit_missing_path(self, tmp_path):
        assert load_config(tmp_path, tmp_path / "nope.yaml").raw == {}

    def test_bad_values(self, tmp_path):
        cfg = WardenConfig(
            raw={"hitl": {"timeout_seconds": "soon", "mode": "maybe"}, "observers": {"max_workers": "x"}, "logging": {"level": "chatty"}},
            workspace=tmp_path,
        )
        assert cfg.hitl_timeout_s == 60.0
        assert cfg.hitl_mode == "deny"
        assert cfg.observer_workers == 4
        assert cfg.log_level == logging.INFO


class TestWiring:
    def test_gate_modes(self, tmp_path):
        from intent_warden.security import classify_command

        risky = classify_command("rm -rf /")
        approve = gate_for_config(WardenConfig(raw={"hitl": {"mode": "approve"}}, workspace=tmp_path))
        deny = gate_for_config(WardenConfig(raw={"hitl": {"mode": "deny"}}, workspace=tmp_path))
        prompt = gate_for_config(WardenConfig(raw={}, workspace=tmp_path))
        assert approve.request_approval(risky) is True
        assert deny.request_approval(risky) is False
        assert isinstance(prompt, ApprovalGate) and prompt.name == "console"

    def test_open_warden_store_choice(self, tmp_path):
        w = open_warden(tmp_path)
        try:
            assert isinstance(w.registry.store, PersistentSessionStore)
        finally:
            w.close()

        p = default_config_path(tmp_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("sessions:\n  persist: false\n", encoding="utf-8")
        w = open_warden(tmp_path)
        try:
            assert isinstance(w.registry.store, InMemorySessionStore)
            assert not isinstance(w.registry.store, PersistentSessionStore)
        finally:
            w.close()

    def test_build_pipeline_canonical_order(self, tmp_path):
        from intent_warden.intents import IntentSource
        from intent_warden.main import build_pipeline
        from intent_warden.session_state import SessionRegistry
        from intent_warden.trace import TraceWriter

        cfg = WardenConfig(raw={}, workspace=tmp_path)
        with build_pipeline(
            cfg, SessionRegistry(), IntentSource(cfg.intents_file), TraceWriter(path=cfg.trace_log), None
        ) as p:
            assert [v.hook_id for v in p.validators] == [
                "10_intent_declared",
                "20_intent_consistency",
                "30_scope",
                "40_risk_gate",
            ]
            assert p.lock_check.hook_id == "50_optimistic_lock"
            assert [o.hook_id for o in p.observers] == ["90_trace"]
