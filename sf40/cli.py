#!/usr/bin/env python3
"""Command-line access to an SF40 lidar.

Builds a session from SF40Settings, calls library methods and maps protocol
errors to exit codes: 0 ok, 1 usage, 2 device or protocol error.
"""

import argparse
import csv
import json
import logging
import sys

from .byte_logger import ByteDumpLogger
from .commands import AlarmConfig, OutputRate
from .config import SF40Settings
from .csv_logger import CSVLogger
from .driver import LightwareSF40
from .protocol import SF40Error

logger = logging.getLogger("sf40.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sf40", description="LightWare SF40/c lidar tool")
    parser.add_argument("--port", help="serial port (env SF40_PORT)")
    parser.add_argument("--baud", type=int, help="baud rate (env SF40_BAUD)")
    parser.add_argument("--timeout-ms", type=float, help="transaction timeout (env SF40_TIMEOUT_MS)")
    parser.add_argument("--mock", action="store_true", default=None,
                        help="use the simulated device (env SF40_MOCK_DEVICE)")
    parser.add_argument("--csv", help="log transactions to this CSV file")
    parser.add_argument("--dump", help="raw byte dump base path")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("info", help="print identification and health readings")
    sub.add_parser("distance", help="read distance in the configured sector")

    p = sub.add_parser("stream", help="print stream samples")
    p.add_argument("-n", "--count", type=int, default=5)

    p = sub.add_parser("scan", help="capture one revolution")
    p.add_argument("--out", help="write angle/distance rows to this CSV file")
    p.add_argument("--timeout", type=float, default=2.0)

    p = sub.add_parser("set-rate", help="set stream output rate")
    p.add_argument("pps", type=int, choices=[r.points_per_second for r in OutputRate])

    p = sub.add_parser("set-offset", help="set forward offset in degrees")
    p.add_argument("degrees", type=int)

    p = sub.add_parser("laser", help="enable or disable the laser")
    p.add_argument("state", choices=["on", "off"])

    p = sub.add_parser("alarms", help="show alarm state and configuration")
    p.add_argument("--set", type=int, metavar="N", help="configure alarm N (1-7)")
    p.add_argument("--direction", type=int, default=0)
    p.add_argument("--width", type=int, default=10)
    p.add_argument("--distance", type=int, default=100)
    p.add_argument("--disable", action="store_true")

    sub.add_parser("save", help="persist current settings")
    return parser


def _settings(args) -> SF40Settings:
    return SF40Settings.from_env().override(
        port=args.port,
        baudrate=args.baud,
        timeout=args.timeout_ms / 1000.0 if args.timeout_ms else None,
        mock=args.mock,
    )


def _run(lidar: LightwareSF40, args) -> int:
    if args.cmd == "info":
        print(json.dumps(lidar.info(), indent=2))
        return 0

    if args.cmd == "distance":
        d = lidar.get_distance()
        print(f"average {d.average_cm} cm, closest {d.closest_cm} cm at {d.angle_deg:.1f} deg, "
              f"furthest {d.furthest_cm} cm ({d.calculation_time_us} us)")
        return 0

    if args.cmd == "stream":
        lidar.set_streaming(True)
        try:
            for _ in range(args.count):
                s = lidar.read_stream_sample(timeout=1.0)
                print(f"rev {s.revolution_index:3d} points {s.point_start_index}-"
                      f"{s.point_start_index + s.point_count - 1}/{s.point_total} "
                      f"min {s.distances.min() if s.point_count else '-'} cm "
                      f"alarms 0x{s.alarm_state.raw:02x}")
        finally:
            lidar.set_streaming(False)
        return 0

    if args.cmd == "scan":
        lidar.set_streaming(True)
        try:
            scan = lidar.get_scan(timeout=args.timeout)
        finally:
            lidar.set_streaming(False)
        print(f"revolution {scan.revolution_index}: {len(scan)} points")
        if args.out:
            with open(args.out, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["angle_deg", "distance_cm"])
                for angle, dist in zip(scan.angles, scan.distances):
                    writer.writerow([f"{angle:.3f}", int(dist)])
            print(f"wrote {args.out}")
        return 0

    if args.cmd == "set-rate":
        rate = next(r for r in OutputRate if r.points_per_second == args.pps)
        lidar.set_output_rate(rate, verify=True)
        print(f"output rate {args.pps} pps")
        return 0

    if args.cmd == "set-offset":
        lidar.set_forward_offset(args.degrees, verify=True)
        print(f"forward offset {args.degrees} deg")
        return 0

    if args.cmd == "laser":
        lidar.set_laser_firing(args.state == "on", verify=True)
        print(f"laser {args.state}")
        return 0

    if args.cmd == "alarms":
        if args.set is not None:
            lidar.set_alarm(args.set, AlarmConfig(not args.disable, args.direction,
                                                  args.width, args.distance), verify=True)
        state = lidar.get_alarm_state()
        print(f"active: {state.active or 'none'}")
        for n in range(1, 8):
            a = lidar.get_alarm(n)
            print(f"  alarm {n}: {'on ' if a.enabled else 'off'} dir {a.direction} "
                  f"width {a.width} dist {a.distance_cm} cm")
        return 0

    if args.cmd == "save":
        lidar.save_parameters()
        print("parameters saved")
        return 0

    return 1


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 1

    try:
        settings = _settings(args)
    except ValueError as e:
        print(f"sf40: {e}", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.DEBUG if args.verbose else settings.log_level)

    csv_logger = CSVLogger(args.csv) if args.csv else None
    byte_logger = ByteDumpLogger(args.dump) if args.dump else None
    try:
        with LightwareSF40.from_settings(settings, byte_logger=byte_logger,
                                         csv_logger=csv_logger) as lidar:
            return _run(lidar, args)
    except SF40Error as e:
        logger.error(f"{args.cmd} failed: {e}")
        if byte_logger:
            byte_logger.log_error(str(e))
        return 2
    except ValueError as e:
        logger.error(f"{args.cmd}: {e}")
        return 1
    except OSError as e:
        # pyserial raises SerialException (an OSError) when the port cannot be opened
        logger.error(f"Cannot open {settings.port}: {e}")
        return 2
    finally:
        if csv_logger:
            csv_logger.close()
        if byte_logger:
            byte_logger.close()


if __name__ == "__main__":
    sys.exit(main())
