"""IDTP ingestion service and device simulator."""
from __future__ import annotations

import json
import logging
import signal
import time

import click

from idtp_core.frame import FIXED_PAYLOADS
from idtp_core.protocol import (
    DEFAULT_COUNTER_BITS,
    DEFAULT_DT_CEILING,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RESYNC_AFTER,
    DEFAULT_SAMPLE_RATE_HZ,
    DEFAULT_SEQUENCE_WINDOW,
    DEFAULT_TICK_HZ,
    DEFAULT_UDP_PORT,
)
from idtp_verify.cli import context_or_exit, with_keys
from .config import DROP_POLICIES, ClockConfig, NetConfig, PipelineConfig
from .pipeline import IngestionPipeline
from .simulator import ImuSimulator
from .timing import TickClock
from .transport import Ingester, UdpSource

logger = logging.getLogger("idtp_ingest")

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

PAYLOAD_TYPES = {cls.__name__: type_id for type_id, cls in FIXED_PAYLOADS.items()}


def clock_options(fn):
    fn = click.option("--rollover-threshold", type=int, default=None, help="Ticks; default is half the counter range.")(fn)
    fn = click.option("--counter-bits", type=int, default=DEFAULT_COUNTER_BITS, show_default=True)(fn)
    fn = click.option("--tick-hz", type=int, default=DEFAULT_TICK_HZ, show_default=True)(fn)
    return fn


def install_reset_handler(pipeline: IngestionPipeline):
    """SIGHUP forgets all replay state (e.g. after devices reboot). Returns the previous handler."""
    if not hasattr(signal, "SIGHUP"):
        return None

    def handle_hup(signum, frame):
        logger.info("Received signal %d, resetting replay state", signum)
        pipeline.request_reset()

    return signal.signal(signal.SIGHUP, handle_hup)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def main(log_level: str):
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@main.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=DEFAULT_UDP_PORT, show_default=True)
@click.option("--queue-size", type=int, default=DEFAULT_QUEUE_SIZE, show_default=True)
@click.option("--drop-policy", type=click.Choice(DROP_POLICIES), default="oldest", show_default=True)
@click.option("--sample-rate", type=float, default=DEFAULT_SAMPLE_RATE_HZ, show_default=True, help="Nominal Hz.")
@click.option("--dt-ceiling", type=float, default=DEFAULT_DT_CEILING, show_default=True, help="Seconds.")
@click.option("--sequence-window", type=int, default=DEFAULT_SEQUENCE_WINDOW, show_default=True)
@click.option("--timestamp-tolerance", type=int, default=0, show_default=True, help="Ticks.")
@click.option(
    "--resync-after",
    type=int,
    default=DEFAULT_RESYNC_AFTER,
    show_default=True,
    help="Advancing frames beyond the window that re-baseline a device; 0 disables.",
)
@clock_options
@click.option("--duration", type=float, default=None, help="Stop after N seconds (default: until Ctrl-C).")
@click.option("--drain/--no-drain", default=False, help="Process queued datagrams on shutdown.")
@with_keys
def listen(
    host: str,
    port: int,
    queue_size: int,
    drop_policy: str,
    sample_rate: float,
    dt_ceiling: float,
    sequence_window: int,
    timestamp_tolerance: int,
    resync_after: int,
    tick_hz: int,
    counter_bits: int,
    rollover_threshold: int | None,
    duration: float | None,
    drain: bool,
    **keys,
):
    """Receive, validate and report IDTP frames over UDP."""
    ctx = context_or_exit(**keys)
    try:
        net = NetConfig(host=host, port=port, queue_size=queue_size, drop_policy=drop_policy)
        cfg = PipelineConfig(
            sample_rate_hz=sample_rate,
            dt_ceiling=dt_ceiling,
            sequence_window=sequence_window,
            timestamp_tolerance=timestamp_tolerance,
            resync_after=resync_after,
            clock=ClockConfig(tick_hz, counter_bits, rollover_threshold),
        )
        pipeline = IngestionPipeline(ctx, cfg)
        source = UdpSource.from_config(net)
    except (ValueError, OSError) as e:
        click.echo(f"FATAL: {e}")
        raise SystemExit(1)

    ingester = Ingester(source, pipeline, net.queue_size, net.drop_policy)
    logger.info("Listening on %s:%d (envelope=%s)", *source.address, ctx.has_envelope)
    previous_hup = install_reset_handler(pipeline)
    ingester.start()

    deadline = None if duration is None else time.monotonic() + duration
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(1.0)
            pipeline.telemetry.tick()
            stats = pipeline.telemetry.snapshot()
            logger.info(
                "pps=%d accepted=%d rejected=%d queue=%d",
                stats["pps"],
                stats["accepted"],
                stats["rejected"],
                ingester.pending(),
            )
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        if previous_hup is not None:
            signal.signal(signal.SIGHUP, previous_hup)
        ingester.stop(drain=drain)
        source.close()

    stats = pipeline.telemetry.snapshot()
    stats["dropped"] = ingester.dropped
    stats["discarded"] = ingester.discarded
    click.echo(json.dumps(stats, sort_keys=True, separators=(",", ":")))


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=DEFAULT_UDP_PORT, show_default=True)
@click.option("--count", type=int, default=None, help="Frames to send (default: forever).")
@click.option("--rate", type=float, default=DEFAULT_SAMPLE_RATE_HZ, show_default=True, help="Frames per second.")
@click.option("--payload-type", type=click.Choice(sorted(PAYLOAD_TYPES)), default="Imu9", show_default=True)
@click.option("--device-id", type=int, default=0xABCD, show_default=True)
@click.option("--start-sequence", type=int, default=0, show_default=True)
@click.option("--start-timestamp", type=int, default=0, show_default=True)
@click.option("--seed", type=int, default=1, show_default=True)
@clock_options
@click.option("--realtime/--no-realtime", default=True, help="Pace frames at --rate.")
@with_keys
def simulate(
    host: str,
    port: int,
    count: int | None,
    rate: float,
    payload_type: str,
    device_id: int,
    start_sequence: int,
    start_timestamp: int,
    seed: int,
    tick_hz: int,
    counter_bits: int,
    rollover_threshold: int | None,
    realtime: bool,
    **keys,
):
    """Send synthetic, correctly sealed IMU frames."""
    ctx = context_or_exit(**keys)
    try:
        sim = ImuSimulator(
            ctx,
            payload_type=PAYLOAD_TYPES[payload_type],
            device_id=device_id,
            sample_rate_hz=rate,
            clock=TickClock(tick_hz, counter_bits, rollover_threshold),
            start_sequence=start_sequence,
            start_timestamp=start_timestamp,
            seed=seed,
        )
    except ValueError as e:
        click.echo(f"FATAL: {e}")
        raise SystemExit(1)

    logger.info("Simulating %s device %d -> %s:%d at %.1f Hz", payload_type, device_id, host, port, rate)
    try:
        sent = sim.send_udp(host, port, count=count, realtime=realtime)
    except KeyboardInterrupt:
        sent = sim.sent
    except OSError as e:
        click.echo(f"FATAL: {e}")
        raise SystemExit(1)
    click.echo(json.dumps({"sent": sent, "next_sequence": sim.sequence}, sort_keys=True, separators=(",", ":")))


if __name__ == "__main__":
    main()
