from __future__ import annotations

from chain.models import ChainSettings, SubmissionMode
from config import OracleConfig
from consensus.models import ConsensusSettings
from dispute.models import DisputeConfig
from services import build_services


def test_build_services_shares_one_instance_per_component(tmp_path, monkeypatch, dispute_database) -> None:
    monkeypatch.setenv("RESOLUTION_DB_PATH", str(tmp_path / "resolutions.db"))
    config = OracleConfig(
        consensus=ConsensusSettings(round_timeout=30.0),
        chain=ChainSettings(submission_mode=SubmissionMode.RELAY),
        dispute=DisputeConfig(slash_percentage=0.1, window_hours=12),
    )

    services = build_services(config)

    assert services.watcher.history is services.history
    assert services.watcher.submitter is services.submitter
    assert services.watcher.engine is services.engine
    assert services.watcher.round_timeout == 30.0
    assert services.submitter.mode == SubmissionMode.RELAY
    assert services.disputes.config.slash_percentage == 0.1
    assert services.history.db_path == str(tmp_path / "resolutions.db")
    assert services.chain.connected is False
