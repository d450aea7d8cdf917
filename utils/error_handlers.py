import logging
from functools import wraps
from flask import jsonify

logger = logging.getLogger(__name__)


def handle_errors(f):
    """API 端點錯誤處理裝飾器"""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ValueError as e:
            logger.warning(f"參數錯誤: {e}")
            return jsonify({"success": False, "error": str(e)}), 400
        except LookupError as e:
            logger.warning(f"找不到資料: {e}")
            return jsonify({"success": False, "error": "找不到指定的資料。"}), 404
        except Exception as e:
            logger.error(f"伺服器錯誤: {e}", exc_info=True)
            return jsonify({"success": False, "error": "伺服器內部錯誤。"}), 500
    return decorated
