import argparse
import asyncio
import copy
import logging
import sys
from pathlib import Path

import yaml

from bluez import BluezTransport
from data_saver import AsyncDataSaver
from device_info import DeviceInfo, prefix_for_name
from health import HealthAnalyzer
from hrm import HR_MEASUREMENT_UUID
from pipeline import NotificationPipeline
from replay import analyze_log
from scan import list_devices
from session import DeviceSession, SessionTimings, SetupError

logger = logging.getLogger("polar_hrm")

DEFAULT_CONFIG = {
    # preference order: first name found wins
    "device_names": ["Polar H10 8A8F192B", "Polar H9 EA190E24"],
    "adapter_path": "/org/bluez/hci0",
    "characteristic_uuid": HR_MEASUREMENT_UUID,
    "output_dir": "~/.cache",
    "tick_seconds": 0.5,
    "call_timeout": 25.0,
    "health": {"enabled": False, "recovery_min_ms": 1000},
    "session": {},
}


def load_config(path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if not path:
        return cfg
    cfg_path = Path(path).expanduser()
    if not cfg_path.exists():
        return cfg
    with cfg_path.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    for key, value in loaded.items():
        if isinstance(cfg.get(key), dict) and isinstance(value, dict):
            cfg[key].update(value)
        else:
            cfg[key] = value
    return cfg


def setup_logging(debug=False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def emit_line(line, data_saver):
    print(line, flush=True)
    data_saver.submit(line)


async def run(cfg, health_warnings=False):
    transport = BluezTransport(call_timeout=float(cfg["call_timeout"]))
    await transport.connect()

    data_saver = AsyncDataSaver(save_dir=cfg["output_dir"])
    analyzer = None
    if health_warnings:
        analyzer = HealthAnalyzer(recovery_min_ms=int(cfg["health"]["recovery_min_ms"]))
    pipeline = NotificationPipeline(sink=lambda line: emit_line(line, data_saver), analyzer=analyzer)

    session = DeviceSession(
        transport,
        cfg["device_names"],
        pipeline.handle_properties,
        characteristic_uuid=cfg["characteristic_uuid"],
        adapter_path=cfg["adapter_path"],
        timings=SessionTimings.from_dict(cfg["session"]),
    )

    try:
        try:
            device = await session.start()
        except SetupError as e:
            logger.error("%s", e)
            return 1

        prefix = prefix_for_name(device.name)
        data_saver.prefix = prefix
        await data_saver.start()

        info = None
        if prefix == "polarh10":
            info = DeviceInfo(transport, Path(cfg["output_dir"]), prefix)
            await info.capture(device.path)

        logger.info("Listening for notifications (Ctrl+C to quit)...")
        tick = float(cfg["tick_seconds"])
        while True:
            await session.maintain()
            if info is not None:
                await info.poll_battery(session.state.device_path)
            await asyncio.sleep(tick)
    finally:
        await session.close()
        if data_saver.task is not None:
            await data_saver.stop()
        transport.disconnect()
        if pipeline.suppressed:
            logger.info("suppressed %d duplicate line(s)", pipeline.suppressed)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="polar-hrm",
        description="Heart-rate monitor client for BLE chest straps over BlueZ",
    )
    parser.add_argument("--config", default="config.yml", help="Path to YAML config")
    parser.add_argument("-d", "--debug", action="store_true", help="Verbose [DEBUG] logging")
    parser.add_argument("--health-warnings", action="store_true", help="Screen samples for rate/rhythm anomalies")
    parser.add_argument("--analyze-log", metavar="PATH", help="Replay a recorded log through the analyzer and exit")
    parser.add_argument("--scan", action="store_true", help="List nearby BLE devices and exit")
    parser.add_argument("--output-dir", help="Directory for sample/battery/device-info logs")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)
    cfg = load_config(args.config)
    if args.output_dir:
        cfg["output_dir"] = args.output_dir

    if args.analyze_log:
        return analyze_log(args.analyze_log, recovery_min_ms=int(cfg["health"]["recovery_min_ms"]))

    if args.scan:
        asyncio.run(list_devices(cfg["device_names"]))
        return 0

    health_warnings = args.health_warnings or bool(cfg["health"]["enabled"])
    try:
        return asyncio.run(run(cfg, health_warnings=health_warnings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
