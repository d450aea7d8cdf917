"""
Class Schedule - 個人週課表 (網路時間校正 + 學期進度)
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from dotenv import load_dotenv

load_dotenv()

from flask import Flask
from config import Config
from routes import main_bp, api_bp
from services.clock_service import get_clock
from utils.repeating_task import RepeatingTask

logger = logging.getLogger(__name__)

_logging_configured = False


def configure_logging():
    """日誌設定 (檔案 + 主控台)"""
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    root = logging.getLogger()
    root.setLevel(Config.LOG_LEVEL)
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    file_handler = RotatingFileHandler(
        os.path.join(Config.LOG_DIR, 'app.log'),
        maxBytes=1024 * 1024, backupCount=3, encoding='utf-8',
    )
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)


def create_app():
    """Flask 應用程式工廠"""
    app = Flask(__name__)
    app.config.from_object(Config)

    # 必要目錄
    os.makedirs(Config.DATA_DIR, exist_ok=True)
    os.makedirs(Config.LOG_DIR, exist_ok=True)
    configure_logging()

    # Blueprint 註冊
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp)

    # 安全標頭
    @app.after_request
    def set_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Content-Security-Policy'] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; "
            "connect-src 'self'"
        )
        return response

    return app


def start_time_sync():
    """啟動時同步一次, 之後每 TIME_SYNC_INTERVAL 重新同步"""
    clock = get_clock()
    task = RepeatingTask(
        Config.TIME_SYNC_INTERVAL.total_seconds(),
        clock.sync,
        name='time-sync',
        run_immediately=True,
    )
    return task.start()


# WSGI 伺服器使用的全域實例
app = create_app()


def main():
    """主程式"""
    print("=" * 50)
    print("  Class Schedule")
    print("=" * 50)
    print(f"  http://localhost:{Config.PORT}/")
    print(f"  學期開始: {Config.SEMESTER_START.isoformat()} ({Config.SEMESTER_WEEKS}週)")
    print(f"  網路時間同步: {'啟用' if Config.TIME_SYNC_ENABLED else '停用'}")
    print("=" * 50)

    sync_task = start_time_sync() if Config.TIME_SYNC_ENABLED else None
    try:
        if Config.DEBUG:
            app.run(debug=True, host=Config.HOST, port=Config.PORT, use_reloader=False)
        else:
            from waitress import serve
            print(f"Waitress 伺服器啟動 (port: {Config.PORT})")
            serve(app, host=Config.HOST, port=Config.PORT)
    finally:
        if sync_task is not None:
            sync_task.cancel(timeout=1)


if __name__ == '__main__':
    main()
