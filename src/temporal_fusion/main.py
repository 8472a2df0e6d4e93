#!/usr/bin/env python3
"""
temporal-fusion: Fused Time and Temporal Data Daemon

Main entry point. This service:
1. Polls the configured timing providers every sync interval
2. Fuses their answers into one FusedTime (local clock if none answer)
3. Hosts the configured data streams in memory
4. Reports status over HTTP (/health, /status, /metrics)

Usage:
    # Start daemon
    temporal-fusion --config /etc/temporal-fusion/config.toml

    # One sync cycle, print the fused time and exit
    temporal-fusion --config config.toml --once

Configuration (TOML):
    [sync]
    interval_s = 30.0
    max_workers = 8

    [[sources]]
    id = "gps"
    preset = "gps"
    base_url = "https://dashboard.example.org"

    [[sources]]
    id = "lab-clock"
    url = "https://lab.example.org/time"
    timestamp_unit = "s"
    accuracy_unit = "us"
    timeout_s = 2.0

    [[streams]]
    id = "temperature"
    resolution_ms = 60000
    interpolation = "linear"

    [output]
    health_port = 8080
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from .engine.sync_scheduler import SyncScheduler
from .engine.temporal_engine import TemporalFusionEngine
from .interfaces.data_models import StreamConfig
from .reconstruction.gap_reconstructor import GapReconstructor
from .sources.http_source import HttpTimeSource
from .sources.time_source import LocalClockSource, TimeSource
from .timing.time_fusion import TimeFusionEngine

logger = logging.getLogger('temporal-fusion')

DEFAULT_CONFIG: Dict[str, Any] = {
    'sync': {
        'interval_s': 30.0,
        'max_workers': 8,
        'staleness_s': 60.0,
        'min_sources_for_full_confidence': 4,
        'fallback_accuracy_s': 1.0,
        'backstep_tolerance_ms': 50.0,
    },
    'reconstruction': {
        'window_size': 5,
    },
    'sources': [
        {'id': 'host-clock', 'type': 'local'},
    ],
    'streams': [],
    'output': {
        'health_port': 8080,
        'bind_address': '0.0.0.0',
    },
}

# Keys of a [[sources]] entry passed through to the adapter constructor
SOURCE_OPTIONS = (
    'timeout_s', 'base_accuracy', 'base_geometry_quality',
    'timestamp_unit', 'accuracy_unit', 'headers', 'params',
)
STREAM_OPTIONS = ('resolution_ms', 'retention_window_ms', 'interpolation', 'max_points')


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from TOML file, filling in defaults per section."""
    config: Dict[str, Any] = {}
    if config_path:
        if Path(config_path).exists():
            with open(config_path, 'r') as f:
                config = toml.load(f)
        else:
            logger.warning(f"Config file {config_path} not found - using defaults")

    merged: Dict[str, Any] = {}
    for section, default in DEFAULT_CONFIG.items():
        value = config.get(section, default)
        if isinstance(default, dict):
            merged[section] = {**default, **(value or {})}
        else:
            merged[section] = list(value)
    return merged


def build_source(entry: Dict[str, Any]) -> TimeSource:
    """Create one adapter from a [[sources]] table."""
    options = {k: entry[k] for k in SOURCE_OPTIONS if k in entry}
    source_id = entry.get('id')

    if entry.get('type') == 'local':
        options = {k: v for k, v in options.items() if k in ('timeout_s', 'base_accuracy', 'base_geometry_quality')}
        return LocalClockSource(source_id or 'host-clock', **options)
    if 'preset' in entry:
        if 'url' in entry:
            options['url'] = entry['url']
        return HttpTimeSource.from_preset(entry['preset'], base_url=entry.get('base_url'),
                                          source_id=source_id, **options)
    if 'url' in entry:
        if not source_id:
            raise ValueError(f"Source with url {entry['url']!r} needs an id")
        return HttpTimeSource(source_id, entry['url'], **options)

    raise ValueError(f"Source entry needs 'type = \"local\"', 'preset' or 'url': {entry}")


def build_sources(entries: List[Dict[str, Any]]) -> List[TimeSource]:
    return [build_source(entry) for entry in entries]


def build_engine(config: Dict[str, Any]) -> TemporalFusionEngine:
    """Assemble a TemporalFusionEngine (not started) from a loaded config."""
    sync = config['sync']
    fusion = TimeFusionEngine(
        staleness_s=sync['staleness_s'],
        min_sources_for_full_confidence=sync['min_sources_for_full_confidence'],
        fallback_accuracy_s=sync['fallback_accuracy_s'],
    )
    scheduler = SyncScheduler(
        build_sources(config['sources']),
        fusion=fusion,
        interval_s=sync['interval_s'],
        max_workers=sync['max_workers'],
        backstep_tolerance_ms=sync['backstep_tolerance_ms'],
    )
    engine = TemporalFusionEngine(
        scheduler=scheduler,
        reconstructor=GapReconstructor(window_size=config['reconstruction']['window_size']),
    )

    for entry in config['streams']:
        if 'id' not in entry:
            raise ValueError(f"Stream entry needs an id: {entry}")
        stream_config = StreamConfig(**{k: entry[k] for k in STREAM_OPTIONS if k in entry})
        engine.register_stream(entry['id'], stream_config)

    return engine


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='temporal-fusion: Fused Time and Temporal Data Daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with config file
    temporal-fusion --config /etc/temporal-fusion/config.toml

    # Faster sync and debug logging
    temporal-fusion --config config.toml --interval 5 --debug

    # Single sync cycle, JSON result on stdout
    temporal-fusion --config config.toml --once
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--interval', '-i',
        type=float,
        help='Sync interval in seconds (overrides config)'
    )
    parser.add_argument(
        '--health-port',
        type=int,
        help='HTTP port for health monitoring endpoint (overrides config, 0 to disable)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single sync cycle, print the fused time as JSON and exit'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    # Apply command-line overrides
    if args.interval is not None:
        config['sync']['interval_s'] = args.interval
    if args.health_port is not None:
        config['output']['health_port'] = args.health_port

    try:
        engine = build_engine(config)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.once:
        try:
            engine.scheduler.run_cycle()
            print(json.dumps(engine.get_timing_quality(), indent=2))
        finally:
            engine.stop()
        return

    health_server = None
    health_port = config['output']['health_port']
    if health_port > 0:
        from .output.health_server import HealthServer
        health_server = HealthServer(port=health_port, bind_address=config['output']['bind_address'])
        health_server.set_engine(engine)
        health_server.start()

    try:
        engine.run()
    finally:
        if health_server:
            health_server.stop()


if __name__ == '__main__':
    main()
