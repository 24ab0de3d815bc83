#!/usr/bin/env python3
"""
Simple serial port monitor for the SF40.
Reassembles frames from the incoming bytes and prints one line per frame.
"""

import sys
import time
from datetime import datetime

import serial

from sf40 import protocol
from sf40.commands import SF40Command
from sf40.stream import decode_stream_payload


def timestamp():
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def describe(frame):
    try:
        name = SF40Command(frame.command).name
    except ValueError:
        name = f"CMD {frame.command}"
    if frame.command == SF40Command.DISTANCE_OUTPUT:
        try:
            s = decode_stream_payload(frame.payload, capacity=1024)
        except protocol.SF40Error as e:
            return f"{name} (undecodable: {e})"
        return (f"{name} rev {s.revolution_index} points {s.point_start_index}"
                f"+{s.point_count}/{s.point_total}")
    return f"{name} {'W' if frame.write else 'R'} {frame.payload.hex(' ')}"


def main():
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyUSB0"
    baud = int(sys.argv[2]) if len(sys.argv) > 2 else 115200

    print(f"Opening {port} at {baud} baud...")
    print("Press Ctrl+C to exit\n")

    ser = None
    try:
        ser = serial.Serial(port, baud, timeout=0.1)
        buf = bytearray()
        last_rx = time.time()
        frames = 0
        errors = 0

        while True:
            chunk = ser.read(256)
            if not chunk:
                idle_s = time.time() - last_rx
                if idle_s > 5:
                    print(f"[{timestamp()}] Idle for {idle_s:.1f}s "
                          f"(frames: {frames}, errors: {errors})")
                    last_rx = time.time()
                continue

            last_rx = time.time()
            buf.extend(chunk)
            while buf:
                start = buf.find(protocol.START_BYTE)
                if start < 0:
                    buf.clear()
                    break
                del buf[:start]
                try:
                    frame = protocol.parse_frame(bytes(buf))
                except protocol.SF40FramingError as e:
                    if e.reason == protocol.TRUNCATED:
                        break  # wait for more bytes
                    errors += 1
                    del buf[:1]
                    continue
                except protocol.SF40ChecksumError as e:
                    errors += 1
                    print(f"[{timestamp()}] {e}")
                    del buf[:1]
                    continue
                del buf[:frame.payload_len + protocol.HEADER_SIZE + protocol.CHECKSUM_SIZE]
                frames += 1
                print(f"[{timestamp()}] {describe(frame)}")
            sys.stdout.flush()

    except KeyboardInterrupt:
        print("\n\nMonitoring stopped")
    except serial.SerialException as e:
        print(f"\nError: {e}")
    finally:
        if ser is not None:
            ser.close()


if __name__ == "__main__":
    main()
