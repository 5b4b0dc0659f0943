#!/usr/bin/env python3
"""
Realtime Hub Simulation
-----------------------
In-process simulation of the realtime hub.

This script demonstrates:
- 1 RealtimeHub
- N tourist sessions + M admin/government dashboards over LocalTransport
- Location and device telemetry fanned out to admin_room
- An emergency alert reaching admin_room and the tourist's contacts
- A rejected connection (bad credential)

Usage:
    python scripts/run_realtime_simulation.py --help
    python scripts/run_realtime_simulation.py --num-tourists 5 --num-admins 2
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import Dict, List

# Add src to path
_script_dir = Path(__file__).parent
_src_dir = _script_dir.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from tourist_realtime import Event, EventType, RealtimeConfig, RealtimeHub
from tourist_realtime.auth import issue_token
from tourist_realtime.transport import LocalTransport

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("realtime_simulation")

SECRET = "simulation-secret"


class RealtimeSimulation:
    """
    Runs a realtime hub simulation.
    """

    def __init__(self, num_tourists: int = 3, num_admins: int = 1, updates_per_tourist: int = 3):
        self.num_tourists = num_tourists
        self.num_admins = num_admins
        self.updates_per_tourist = updates_per_tourist

        self.hub = RealtimeHub(RealtimeConfig(jwt_secret=SECRET, send_timeout_sec=1.0))
        self.transports: Dict[str, LocalTransport] = {}
        self.tasks: List[asyncio.Task] = []

    async def _connect(self, name: str, subject_id: str, role: str) -> LocalTransport:
        transport = LocalTransport(name)
        token = issue_token(SECRET, subject_id, role=role)
        self.tasks.append(asyncio.create_task(self.hub.handle_connection(token, transport)))
        self.transports[name] = transport
        return transport

    async def setup(self) -> None:
        """Start hub and open sessions."""
        logger.info("=" * 60)
        logger.info("Setting up realtime simulation")
        logger.info("  Tourists: %d", self.num_tourists)
        logger.info("  Admins: %d", self.num_admins)
        logger.info("=" * 60)

        await self.hub.start()

        for i in range(self.num_admins):
            role = "admin" if i % 2 == 0 else "government"
            await self._connect(f"{role}-{i}", f"ops-{i}", role)

        for i in range(self.num_tourists):
            await self._connect(f"tourist-{i}", str(100 + i), "user")

        # Rejected: credential signed with the wrong secret
        rogue = LocalTransport("rogue")
        self.tasks.append(asyncio.create_task(
            self.hub.handle_connection(issue_token("wrong-secret", "666"), rogue)
        ))
        self.transports["rogue"] = rogue

        await asyncio.sleep(0.05)
        logger.info("Setup complete: %d sessions joined", self.hub.sessions.count)

    async def run(self) -> None:
        """Emit telemetry and one emergency alert."""
        logger.info("\n--- Phase 1: Telemetry ---")
        tourists = [t for name, t in self.transports.items() if name.startswith("tourist-")]

        for step in range(self.updates_per_tourist):
            for transport in tourists:
                transport.push("location_update", {
                    "lat": 27.17 + random.uniform(-0.01, 0.01),
                    "lon": 78.04 + random.uniform(-0.01, 0.01),
                    "step": step,
                })
                transport.push("device_update", {"battery": random.randint(20, 100)})

        await asyncio.sleep(0.05)
        await self.hub.drain()

        logger.info("\n--- Phase 2: Emergency ---")
        if tourists:
            contacts = [str(100 + i) for i in range(1, min(3, self.num_tourists))]
            tourists[0].push("emergency_alert", {
                "type": "panic",
                "severity": "critical",
                "contacts": contacts + ["999"],  # 999 is offline
            })

        await self.hub.publish(Event(EventType.LOCATION_UPDATE, {"source": "geofence-service"}))
        await asyncio.sleep(0.05)
        await self.hub.drain()

        self._print_stats()

    def _print_stats(self) -> None:
        """Print simulation statistics."""
        logger.info("\n--- Final Statistics ---")
        stats = self.hub.get_stats()
        logger.info("Hub:")
        logger.info("  Sessions: %s", stats["sessions"])
        logger.info("  Rooms: %s", stats["rooms"]["rooms"])
        logger.info("  Routing: %s", stats["routing"])

        logger.info("Clients:")
        for name, transport in self.transports.items():
            counts: Dict[str, int] = {}
            for frame in transport.sent:
                counts[frame["event"]] = counts.get(frame["event"], 0) + 1
            logger.info("  [%s] close=%s received=%s", name, transport.close_code, counts)

    async def cleanup(self) -> None:
        """Disconnect everyone and stop the hub."""
        await self.hub.stop()
        await asyncio.gather(*self.tasks, return_exceptions=True)


async def _main(args: argparse.Namespace) -> None:
    sim = RealtimeSimulation(
        num_tourists=args.num_tourists,
        num_admins=args.num_admins,
        updates_per_tourist=args.updates,
    )
    try:
        await sim.setup()
        await sim.run()
    finally:
        await sim.cleanup()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run an in-process realtime hub simulation"
    )
    parser.add_argument(
        "--num-tourists",
        type=int,
        default=3,
        help="Number of tourist sessions (default: 3)",
    )
    parser.add_argument(
        "--num-admins",
        type=int,
        default=1,
        help="Number of admin/government dashboards (default: 1)",
    )
    parser.add_argument(
        "--updates",
        type=int,
        default=3,
        help="Telemetry rounds per tourist (default: 3)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
