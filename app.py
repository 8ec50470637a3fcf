"""
Flask веб-приложение для извлечения кадров из GIF файлов
"""

from flask import Flask, request, jsonify, Response
import os
import tempfile
import threading
import uuid
from gif_errors import describe_state
from gif_parser import GIFParser

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB максимум
app.config['UPLOAD_FOLDER'] = tempfile.gettempdir()
app.config['GIF_MAX_BUFFER_MEMORY'] = 100 * 1024 * 1024
app.config['GIF_MAX_KEYFRAME_MEMORY'] = 15 * 1024 * 1024
app.config['GIF_MAX_KEYFRAME_REACH'] = 10
app.config['GIF_MAX_SESSIONS'] = 16  # старые GIF выгружаются при превышении
# FLASK_GIF_MAX_BUFFER_MEMORY=... и т.п. из окружения
app.config.from_prefixed_env()


class GifSession:
    """Загруженный GIF; запросы к одному GIF выполняются по очереди"""

    def __init__(self, parser: GIFParser):
        self.parser = parser
        self.lock = threading.Lock()


_sessions = {}
_sessions_lock = threading.Lock()


def _get_session(gif_id: str):
    with _sessions_lock:
        return _sessions.get(gif_id)


def _load_upload(apply_limits: bool = True):
    """
    Сохраняет загруженный файл во временный, разбирает его и удаляет.
    Возвращает (parser, info) или (None, ответ с ошибкой).
    """
    if 'file' not in request.files:
        return None, (jsonify({'error': 'Файл не загружен'}), 400)

    file = request.files['file']
    if file.filename == '':
        return None, (jsonify({'error': 'Файл не выбран'}), 400)

    # Сохраняем временный файл
    temp_path = os.path.join(app.config['UPLOAD_FOLDER'], f'temp_{os.urandom(8).hex()}.gif')
    file.save(temp_path)

    try:
        parser = GIFParser(temp_path)
        if apply_limits:
            parser.set_memory_limits(app.config['GIF_MAX_BUFFER_MEMORY'],
                                     app.config['GIF_MAX_KEYFRAME_MEMORY'],
                                     app.config['GIF_MAX_KEYFRAME_REACH'])
        # Поток остаётся в памяти парсера, файл больше не нужен
        info = parser.load()
        return parser, info
    finally:
        # Удаляем временный файл
        if os.path.exists(temp_path):
            os.remove(temp_path)


def _info_payload(parser: GIFParser, info) -> dict:
    return {
        'width': info.width,
        'height': info.height,
        'frame_count': info.frame_count,
        'delays_ms': info.delays_ms,
        'loop_count': parser.loop_count,
        'errors': describe_state(parser.consolidated_state),
    }


@app.route('/api/info', methods=['POST'])
def get_gif_info():
    """Получает информацию о GIF файле без сохранения его на сервере"""
    try:
        parser, result = _load_upload(apply_limits=False)
        if parser is None:
            return result
        return jsonify(_info_payload(parser, result))
    except Exception as e:
        app.logger.exception("Ошибка парсинга GIF")
        return jsonify({'error': f'Ошибка парсинга: {str(e)}'}), 500


@app.route('/api/gifs', methods=['POST'])
def load_gif():
    """Загружает GIF для последующего извлечения кадров"""
    try:
        parser, result = _load_upload()
        if parser is None:
            return result
    except Exception as e:
        app.logger.exception("Ошибка загрузки GIF")
        return jsonify({'error': f'Ошибка парсинга: {str(e)}'}), 500

    gif_id = uuid.uuid4().hex
    evicted = []
    with _sessions_lock:
        # dict хранит порядок вставки, первым идёт самый старый GIF
        while _sessions and len(_sessions) >= app.config['GIF_MAX_SESSIONS']:
            oldest = next(iter(_sessions))
            evicted.append((oldest, _sessions.pop(oldest)))
        _sessions[gif_id] = GifSession(parser)

    for old_id, session in evicted:
        with session.lock:
            session.parser.unload()
        app.logger.info("GIF %s выгружен: превышено число загруженных GIF", old_id)
    app.logger.info("GIF %s загружен: %dx%d, кадров: %d",
                    gif_id, result.width, result.height, result.frame_count)

    payload = _info_payload(parser, result)
    payload['id'] = gif_id
    return jsonify(payload), 201


@app.route('/api/gifs/<gif_id>/frames/<int:frame_index>', methods=['GET'])
def get_frame(gif_id, frame_index):
    """Возвращает собранный кадр в виде RGBA байтов"""
    session = _get_session(gif_id)
    if session is None:
        return jsonify({'error': 'GIF не найден'}), 404

    try:
        with session.lock:
            parser = session.parser
            if frame_index >= parser.frame_count:
                return jsonify({'error': f'Неверный номер фрейма. Доступно: 0-{parser.frame_count - 1}'}), 400
            pixels = parser.get_frame(frame_index)
            width, height = parser.width, parser.height
    except Exception as e:
        app.logger.exception("Ошибка извлечения фрейма %d", frame_index)
        return jsonify({'error': f'Ошибка извлечения фрейма: {str(e)}'}), 500

    if pixels is None:
        return jsonify({'error': 'Не удалось извлечь фрейм'}), 500

    response = Response(pixels, mimetype='application/octet-stream')
    response.headers['X-Frame-Width'] = str(width)
    response.headers['X-Frame-Height'] = str(height)
    return response


@app.route('/api/gifs/<gif_id>/frames/<int:frame_index>/state', methods=['GET'])
def get_frame_state(gif_id, frame_index):
    """Задержка, признаки ключевого кадра и ошибки фрейма"""
    session = _get_session(gif_id)
    if session is None:
        return jsonify({'error': 'GIF не найден'}), 404

    with session.lock:
        state = session.parser.frame_state(frame_index)
    if state is None:
        return jsonify({'error': 'Неверный номер фрейма'}), 400
    return jsonify(state)


@app.route('/api/gifs/<gif_id>/limits', methods=['PUT'])
def set_limits(gif_id):
    """Меняет ограничения памяти для загруженного GIF"""
    session = _get_session(gif_id)
    if session is None:
        return jsonify({'error': 'GIF не найден'}), 404

    data = request.get_json(silent=True) or {}
    with session.lock:
        buffer_bytes, keyframe_bytes, max_reach = session.parser.memory_limits
        limits = {
            'buffer_bytes': data.get('buffer_bytes', buffer_bytes),
            'keyframe_bytes': data.get('keyframe_bytes', keyframe_bytes),
            'max_reach': data.get('max_reach', max_reach),
        }
        for name, value in limits.items():
            if not isinstance(value, int) or isinstance(value, bool):
                return jsonify({'error': f'Значение {name} должно быть целым числом'}), 400

        session.parser.set_memory_limits(limits['buffer_bytes'], limits['keyframe_bytes'],
                                         limits['max_reach'])
        cache = session.parser.cache
        limits['queue_capacity'] = cache.queue_capacity
        limits['keyframe_interval'] = cache.keyframe_interval
    return jsonify(limits)


@app.route('/api/gifs/<gif_id>', methods=['DELETE'])
def unload_gif(gif_id):
    """Выгружает GIF и освобождает память"""
    with _sessions_lock:
        session = _sessions.pop(gif_id, None)
    if session is None:
        return jsonify({'error': 'GIF не найден'}), 404

    with session.lock:
        session.parser.unload()
    app.logger.info("GIF %s выгружен", gif_id)
    return '', 204


if __name__ == '__main__':
    # Для Docker используем 0.0.0.0, чтобы принимать подключения извне
    app.run(debug=True, host='0.0.0.0', port=5000)
