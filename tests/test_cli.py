import json
import signal
import socket

import pytest
from click.testing import CliRunner

from idtp_ingest.cli import install_reset_handler, main as ingest_main
from idtp_ingest.pipeline import IngestionPipeline
from idtp_verify.cli import main as verify_main
from idtp_verify.crypto import SecurityContext
from idtp_verify.logic import check_datagram

from conftest import TEST_KEY, make_datagram

KEY_HEX = TEST_KEY.hex()


def test_verify_hex_pass(ctx):
    runner = CliRunner()
    r = runner.invoke(verify_main, ["hex", make_datagram(ctx, 1, 1000).hex(), "--hmac-key", KEY_HEX])
    assert r.exit_code == 0, r.output
    result = json.loads(r.output)
    assert result["status"] == "PASS"
    assert result["frame"]["payload_type"] == "Imu6"


def test_verify_hex_fail(ctx):
    data = bytearray(make_datagram(ctx, 1, 1000))
    data[20] ^= 0x01
    r = CliRunner().invoke(verify_main, ["hex", data.hex(), "--hmac-key", KEY_HEX])
    assert r.exit_code == 1
    assert json.loads(r.output)["errors"][0]["code"] == "E_CHECKSUM_MISMATCH"


def test_verify_key_from_env(ctx):
    r = CliRunner().invoke(
        verify_main,
        ["hex", make_datagram(ctx, 1, 1000).hex()],
        env={"IDTP_HMAC_KEY": KEY_HEX},
    )
    assert r.exit_code == 0, r.output


def test_verify_without_key_is_fatal(ctx):
    r = CliRunner().invoke(verify_main, ["hex", make_datagram(ctx, 1, 1000).hex()], env={"IDTP_HMAC_KEY": ""})
    assert r.exit_code == 1
    assert r.output.startswith("FATAL:")


def test_verify_file_with_key_file(ctx, tmp_path):
    key_file = tmp_path / "hmac.key"
    key_file.write_bytes(TEST_KEY)
    frame_file = tmp_path / "frame.bin"
    frame_file.write_bytes(make_datagram(ctx, 4, 4000))
    r = CliRunner().invoke(verify_main, ["file", str(frame_file), "--hmac-key-file", str(key_file)])
    assert r.exit_code == 0, r.output


def test_simulate_sends_sealed_frames():
    sink = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sink.bind(("127.0.0.1", 0))
    sink.settimeout(2.0)
    try:
        port = sink.getsockname()[1]
        r = CliRunner().invoke(
            ingest_main,
            [
                "simulate",
                "--port", str(port),
                "--count", "3",
                "--payload-type", "Imu10",
                "--start-sequence", "100",
                "--no-realtime",
                "--hmac-key", KEY_HEX,
            ],
        )
        assert r.exit_code == 0, r.output
        assert json.loads(r.output.strip().splitlines()[-1]) == {"next_sequence": 103, "sent": 3}

        ctx = SecurityContext(hmac_key=TEST_KEY)
        results = [check_datagram(sink.recvfrom(2048)[0], ctx) for _ in range(3)]
    finally:
        sink.close()

    assert [res["status"] for res in results] == ["PASS"] * 3
    assert [res["frame"]["sequence"] for res in results] == [100, 101, 102]
    assert results[0]["frame"]["payload_type"] == "Imu10"


def test_listen_short_run_reports_stats():
    r = CliRunner().invoke(
        ingest_main,
        ["listen", "--host", "127.0.0.1", "--port", "0", "--duration", "0.5", "--hmac-key", KEY_HEX],
    )
    assert r.exit_code == 0, r.output
    stats = json.loads(r.output.strip().splitlines()[-1])
    assert stats["total"] == 0
    assert stats["dropped"] == 0


def test_listen_rejects_bad_config():
    r = CliRunner().invoke(ingest_main, ["listen", "--queue-size", "0", "--hmac-key", KEY_HEX])
    assert r.exit_code == 1
    assert "FATAL" in r.output


def test_listen_rejects_negative_resync():
    r = CliRunner().invoke(ingest_main, ["listen", "--resync-after", "-1", "--hmac-key", KEY_HEX])
    assert r.exit_code == 1
    assert "resync_after" in r.output


@pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="no SIGHUP on this platform")
def test_sighup_requests_replay_reset(ctx):
    pipeline = IngestionPipeline(ctx)
    pipeline.process(make_datagram(ctx, 5000, 50_000_000))
    previous = install_reset_handler(pipeline)
    try:
        signal.raise_signal(signal.SIGHUP)
    finally:
        signal.signal(signal.SIGHUP, previous)

    assert pipeline.process(make_datagram(ctx, 0, 1000)) is not None
