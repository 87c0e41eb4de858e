#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import logging
from logging.handlers import TimedRotatingFileHandler

# Add current directory to Python path to ensure modules can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, jsonify
from flask_cors import CORS

from hlsconvert import api as hls_api
from hlsconvert import get_converter_config, get_conversion_manager

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

# 配置较少日志输出的模块
for module in ['werkzeug', 'asyncio']:
    logging.getLogger(module).setLevel(logging.WARNING)

logger = logging.getLogger()

if not os.path.exists('logs'):
    os.makedirs('logs')

# 添加按日期滚动的文件处理器
file_handler = TimedRotatingFileHandler(
    'logs/webserver.log',
    when='midnight',
    interval=1,
    backupCount=3  # 保留3天日志
)
file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
file_handler.setLevel(logging.INFO)
logger.addHandler(file_handler)

# Initialize Flask application
app = Flask(__name__)
CORS(app)  # Enable CORS

# Configuration file path
CONFIG_FILE = "config/config.json"


def load_config():
    """Load configuration file"""
    config = {
        "hls": {
            "processed_dir": "processed_videos",
            "videos_dir": "videos",
            "tasks_file": "data/hls_tasks.json",
            "ffmpeg_path": "ffmpeg",
            "ffprobe_path": "ffprobe",
            "probe_timeout": 30,
            "loglevel": "error",
            "options": {
                "hlsTime": 10,
                "copyCodecsThresholdHeight": 720,
                "resolutions": []
            }
        }
    }
    try:
        if os.path.exists(CONFIG_FILE):
            with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                config.update(loaded_config)
                logging.info(f"Loaded configuration file: {CONFIG_FILE}")
        else:
            # Create config directory if it doesn't exist
            os.makedirs(os.path.dirname(CONFIG_FILE), exist_ok=True)
            # Save default config
            with open(CONFIG_FILE, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {CONFIG_FILE}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    return config


# Get current configuration
CURRENT_CONFIG = load_config()

# Initialize conversion manager
converter_config = get_converter_config(CURRENT_CONFIG)
for directory in (converter_config.processed_dir, converter_config.videos_dir):
    os.makedirs(directory, exist_ok=True)

conversion_manager = get_conversion_manager(converter_config)
hls_api.init_conversion_manager(conversion_manager)
hls_api.register_routes(app)
logging.info(f"HLS output directory: {os.path.abspath(converter_config.processed_dir)}")


@app.route('/api/hls/status', methods=['GET'])
def hls_status():
    """Return task counts per status"""
    return jsonify({
        "success": True,
        "status_summary": conversion_manager.get_status_summary()
    })


# Start the server
if __name__ == '__main__':
    port = int(os.environ.get('HLS_PORT') or os.environ.get('PORT', 4000))
    app.run(host='0.0.0.0', port=port, debug=False)
