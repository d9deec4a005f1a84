"""
Live detection monitor entry point.

Loads the layered configuration, builds the detection engine and serves the
HTTP API with uvicorn. The engine's lifetime is tied to the app lifespan, so
the camera is released whenever the server stops.

Usage:
    python src/main.py --config config/config.yaml --start-stream --enable-detection

Arguments:
    --config: Path to configuration file
    --host / --port: Override web.host / web.port
    --device: Override camera.device_id (index or URL)
    --start-stream: Open the camera at startup
    --enable-detection: Start sampling at startup
"""

import os
import sys
import argparse
import logging
from typing import Dict, Any, Tuple, Optional, Union

import uvicorn

from models.config import TICK_POLICIES, Config, check_confidence_threshold, check_interval_ms
from ops.logging import setup_logging
from pipeline.engine import create_engine_from_config
from web.app import create_app
from web.services.config_service import ConfigService


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides, also written by the settings API)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        config_dir = os.path.dirname(config_path)
        merged = ConfigService.read_yaml(os.path.join(config_dir, "default.yaml"))

        local_overrides_path = os.path.join(config_dir, "config.yaml")
        merged = ConfigService.deep_merge(merged, ConfigService.read_yaml(local_overrides_path))

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            merged = ConfigService.deep_merge(merged, ConfigService.read_yaml(config_path))

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['camera', 'detection', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Validate camera settings
    camera = config.get('camera') or {}
    if camera.get('backend', 'opencv') != 'opencv':
        return False, "camera.backend must be: opencv"
    device_id = camera.get('device_id', 0)
    if isinstance(device_id, bool) or not isinstance(device_id, (int, str)):
        return False, "camera.device_id must be an integer (index) or string (URL)"
    if isinstance(device_id, int) and device_id < 0:
        return False, "camera.device_id integer must be non-negative"
    if 'resolution' in camera:
        res = camera['resolution']
        if not isinstance(res, list) or len(res) != 2 or not all(isinstance(x, int) and x > 0 for x in res):
            return False, "camera.resolution must be a list of two positive integers"
    if 'fps' in camera and (not isinstance(camera['fps'], int) or camera['fps'] <= 0):
        return False, "camera.fps must be a positive integer"

    # Validate detection settings
    detection = config.get('detection') or {}
    try:
        check_confidence_threshold(detection.get('confidence_threshold', 0.6))
        check_interval_ms(detection.get('interval_ms', 150))
    except ValueError as e:
        return False, f"detection.{e}"
    if detection.get('tick_policy', 'overlap') not in TICK_POLICIES:
        return False, f"detection.tick_policy must be one of: {', '.join(TICK_POLICIES)}"

    backend = detection.get('backend', 'yolo')
    if backend != 'yolo':
        return False, "detection.backend must be: yolo"
    yolo_cfg = detection.get('yolo') or {}
    if not isinstance(yolo_cfg.get('model'), str) or not yolo_cfg.get('model'):
        return False, "detection.yolo.model is required when detection.backend is 'yolo'"
    if 'iou_threshold' in yolo_cfg and not isinstance(yolo_cfg['iou_threshold'], (int, float)):
        return False, "detection.yolo.iou_threshold must be a number"
    if 'min_score' in yolo_cfg:
        min_score = yolo_cfg['min_score']
        if isinstance(min_score, bool) or not isinstance(min_score, (int, float)) or not 0 <= min_score <= 1:
            return False, "detection.yolo.min_score must be a number between 0 and 1"

    # Validate web settings
    web = config.get('web') or {}
    if 'port' in web:
        port = web['port']
        if isinstance(port, bool) or not isinstance(port, int) or port <= 0:
            return False, "web.port must be a positive integer"

    # Validate log settings
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config['log_level'] not in valid_log_levels:
        return False, f"log_level must be one of: {', '.join(valid_log_levels)}"

    return True, None


def _parse_device(value: str) -> Union[int, str]:
    return int(value) if value.isdigit() else value


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Live Detection Monitor')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--host', type=str, default=None,
                        help='Bind address (overrides web.host)')
    parser.add_argument('--port', type=int, default=None,
                        help='Bind port (overrides web.port)')
    parser.add_argument('--device', type=_parse_device, default=None,
                        help='Camera index or URL (overrides camera.device_id)')
    parser.add_argument('--start-stream', action='store_true',
                        help='Open the camera at startup')
    parser.add_argument('--enable-detection', action='store_true',
                        help='Start detection at startup')
    args = parser.parse_args()

    # Load configuration
    config = load_config(args.config)
    if args.device is not None:
        config.setdefault('camera', {})['device_id'] = args.device

    # Validate configuration
    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    cfg = Config.from_dict(config)

    # Setup logging
    setup_logging(cfg.log_path, cfg.log_level)

    host = args.host or cfg.web.host
    port = args.port or cfg.web.port

    logging.info("Starting Live Detection Monitor")

    engine = create_engine_from_config(config)
    start_options = {
        "preload_model": bool(cfg.detection.preload_model),
        "start_stream": args.start_stream,
        "enable_detection": args.enable_detection or bool(cfg.detection.enabled),
    }
    app = create_app(
        engine,
        config_service=ConfigService(os.path.dirname(args.config) or "."),
        start_options=start_options,
        cors_origins=cfg.web.cors_origins or None,
        stream_fps=int(cfg.web.stream_fps),
    )

    logging.info(f"Web interface on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
    logging.info("Live Detection Monitor stopped")


if __name__ == "__main__":
    main()
