"""
HLS 转换 API 端点

上传视频并转换为 HLS、查询转换任务、为已转换的资源附加音频/字幕轨道，
以及按资源 ID 提供转换后的播放列表和切片文件。
"""

import asyncio
import logging
import os

from flask import jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from .errors import ValidationError
from .models import MediaTrack
from .task import TaskStatus

logger = logging.getLogger(__name__)

# 全局转换管理器实例（在 webserver.py 中初始化）
CONVERSION_MANAGER = None

_MIME_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".aac": "audio/aac",
    ".vtt": "text/vtt",
}


def init_conversion_manager(manager):
    """初始化转换管理器

    Args:
        manager: ConversionManager 实例
    """
    global CONVERSION_MANAGER
    CONVERSION_MANAGER = manager
    logger.info("Conversion manager initialized")


def _positive_int(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _error_response(e):
    if isinstance(e, ValidationError):
        return jsonify({"success": False, "error": str(e)}), 400
    return jsonify({"success": False, "error": str(e)}), 500


def register_routes(app):
    """注册 HLS 转换 API 路由

    Args:
        app: Flask 应用实例
    """

    @app.route('/api/hls/upload', methods=['POST'])
    def hls_upload():
        """上传视频并转换为 HLS

        表单字段：
        - video: 视频文件
        - season: 季（正整数）
        - number: 集（正整数）
        - base_path: 可选，URL 模板中的 {basePath}

        转换完成后返回 master playlist 地址。
        """
        if CONVERSION_MANAGER is None:
            return jsonify({"error": "Conversion manager not initialized"}), 500

        file = request.files.get('video')
        if file is None or not file.filename:
            return jsonify({"success": False, "error": "A valid video file is required"}), 400

        season = _positive_int(request.form.get('season'))
        number = _positive_int(request.form.get('number'))
        if season is None or number is None:
            return jsonify({"success": False, "error": "season and number must be positive integers"}), 400

        filename = secure_filename(file.filename)
        if not filename:
            return jsonify({"success": False, "error": "Invalid file name"}), 400

        asset_id = f"{season}/{number}"
        video_dir = os.path.join(CONVERSION_MANAGER.config.videos_dir, str(season))
        os.makedirs(video_dir, exist_ok=True)
        video_path = os.path.join(video_dir, f"{number}_{filename}")

        try:
            file.save(video_path)
            logger.info(f"[{asset_id}] Saved uploaded video to {video_path}")

            result = asyncio.run(CONVERSION_MANAGER.convert(
                video_path,
                asset_id,
                base_path=request.form.get('base_path', ''),
            ))
        except Exception as e:
            logger.error(f"[{asset_id}] Error processing video upload: {e}")
            return _error_response(e)

        return jsonify({
            "success": True,
            "message": result.message,
            "playlistUrl": result.master_playlist_url,
            "result": result.to_dict(),
        })

    @app.route('/api/hls/tasks', methods=['GET'])
    def hls_list_tasks():
        """列出转换任务，可用 ?status= 过滤"""
        if CONVERSION_MANAGER is None:
            return jsonify({"error": "Conversion manager not initialized"}), 500

        status = request.args.get('status')
        if status:
            try:
                tasks = CONVERSION_MANAGER.list_tasks(TaskStatus(status))
            except ValueError:
                return jsonify({"success": False, "error": f"Unknown status: {status}"}), 400
        else:
            tasks = CONVERSION_MANAGER.list_tasks()

        return jsonify({
            "success": True,
            "tasks": [task.to_dict() for task in tasks],
            "status_summary": CONVERSION_MANAGER.get_status_summary(),
        })

    @app.route('/api/hls/tasks/<task_id>', methods=['GET'])
    def hls_get_task(task_id):
        """获取单个转换任务"""
        if CONVERSION_MANAGER is None:
            return jsonify({"error": "Conversion manager not initialized"}), 500

        task = CONVERSION_MANAGER.get_task(task_id)
        if not task:
            return jsonify({"success": False, "error": "Task not found"}), 404

        return jsonify({"success": True, "task": task.to_dict()})

    @app.route('/api/hls/media', methods=['POST'])
    def hls_attach_media():
        """为已转换的资源附加音频/字幕轨道

        请求体：
        {
            "assetId": "1/2",
            "basePath": "",
            "audioTracks": [{"lang": "es", "name": "Español", "relativePath": "audio_es/audio.m3u8", "isDefault": true}],
            "subtitleTracks": [{"lang": "en", "name": "English", "relativePath": "subs/en.m3u8"}]
        }
        """
        if CONVERSION_MANAGER is None:
            return jsonify({"error": "Conversion manager not initialized"}), 500

        data = request.get_json(silent=True) or {}
        asset_id = data.get('assetId') or data.get('asset_id')

        try:
            audio_tracks = [MediaTrack.from_dict(t) for t in data.get('audioTracks', [])]
            subtitle_tracks = [MediaTrack.from_dict(t) for t in data.get('subtitleTracks', [])]
        except (KeyError, TypeError, AttributeError) as e:
            return jsonify({"success": False, "error": f"Invalid track definition: {e}"}), 400

        try:
            playlist = CONVERSION_MANAGER.attach_media(
                asset_id,
                audio_tracks,
                subtitle_tracks,
                base_path=data.get('basePath', ''),
            )
        except Exception as e:
            logger.error(f"[{asset_id}] Error attaching media: {e}")
            return _error_response(e)

        return jsonify({
            "success": True,
            "audioTracks": len(playlist.audio_tracks()),
            "subtitleTracks": len(playlist.subtitle_tracks()),
        })

    @app.route('/stream-resource/<path:resource>', methods=['GET'])
    def hls_stream_resource(resource):
        """提供转换后的播放列表和切片文件"""
        if CONVERSION_MANAGER is None:
            return "Conversion manager not initialized", 500

        mimetype = _MIME_TYPES.get(os.path.splitext(resource)[1].lower())
        processed_dir = os.path.abspath(CONVERSION_MANAGER.config.processed_dir)
        return send_from_directory(processed_dir, resource, mimetype=mimetype)
