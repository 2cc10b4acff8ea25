import os
import sys
import asyncio
import hashlib
import logging
from functools import wraps
from typing import Optional, Tuple

from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_caching import Cache
from dotenv import load_dotenv

# WSGIMiddleware lets Uvicorn (ASGI) serve the Flask (WSGI) app
from uvicorn.middleware.wsgi import WSGIMiddleware

from phone_numerology import analyze_thai_phone
from fortune_reading import LLMManager, ReadingGenerationError, generate_phone_reading

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.getenv('LOG_FILE', 'numerology_app.log')),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
logger.info("Flask app instance created.")
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'numerology-secret-key-2024')
app.config['CACHE_TYPE'] = os.getenv('CACHE_TYPE', 'SimpleCache')
app.config['CACHE_DEFAULT_TIMEOUT'] = int(os.getenv('CACHE_DEFAULT_TIMEOUT', '300'))

# Initialize extensions (cache and limiter)
cache = Cache(app)
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=["200 per day", "50 per hour"],
    storage_uri=os.getenv('REDIS_URL', 'memory://')
)
logger.info("Flask-Caching and Flask-Limiter initialized.")

# CORS Configuration
CORS(app, resources={r"/*": {"origins": "*"}}, supports_credentials=True)
logger.info("CORS configured for the Flask app.")

llm_manager = LLMManager()


# --- Decorators ---
def cached_operation(timeout=3600):
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Create a unique cache key based on function name and arguments
            key_parts = [func.__name__] + [str(arg) for arg in args]
            for k, v in sorted(kwargs.items()):
                key_parts.append(f"{k}={v}")
            cache_key = hashlib.md5("_".join(key_parts).encode()).hexdigest()

            cached_result = cache.get(cache_key)
            if cached_result:
                logger.info(f"Cache hit for {func.__name__}")
                return cached_result

            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)

            cache.set(cache_key, result, timeout=timeout)
            logger.info(f"Cache miss for {func.__name__}, result cached.")
            return result
        return wrapper
    return decorator


def read_phone_field() -> Tuple[Optional[str], Optional[Tuple]]:
    """
    Pulls the raw 'phone' field from the JSON body.
    Returns (phone, None) or (None, error_response).
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        logger.error("Phone request received without a JSON object body.")
        return None, (jsonify({"error": "invalid_request"}), 400)

    phone = data.get('phone')
    if phone is None:
        phone = ""
    if not isinstance(phone, str):
        logger.error(f"Phone request with invalid 'phone' field: {phone!r}")
        return None, (jsonify({"error": "invalid_request"}), 400)
    return phone, None


@cached_operation(timeout=3600)
async def get_phone_reading(normalized_phone: str) -> dict:
    """Generates (or fetches from cache) the AI reading for an already valid phone number."""
    result = analyze_thai_phone(normalized_phone, strict=True)
    reading = await generate_phone_reading(llm_manager.get_llm(), result)
    return reading.to_response()


# --- Flask Routes ---
@app.route('/')
def home():
    """Basic home route for health check."""
    return jsonify({"status": "ok", "service": "thai-phone-numerology"})


@app.route('/api/numerology/phone', methods=['POST'])
@limiter.limit("30 per minute")
def phone_numerology_endpoint():
    """Deterministic phone numerology: score, tier, root and themes."""
    phone, error_response = read_phone_field()
    if error_response:
        return error_response

    result = analyze_thai_phone(phone)
    if result is None:
        logger.info("Rejected phone number with invalid format.")
        return jsonify({"error": "invalid_phone"}), 400

    logger.info(f"Phone numerology computed: root={result.root}, score={result.score}")
    return jsonify({"ok": True, "result": result.to_dict()}), 200


@app.route('/api/ai/numerology', methods=['POST'])
@limiter.limit("10 per minute")
async def ai_numerology_endpoint():
    """Phone numerology reading written by Gemini from the computed result."""
    try:
        if not llm_manager.is_configured():
            return jsonify({"error": "missing_gemini_api_key"}), 400

        phone, error_response = read_phone_field()
        if error_response:
            return error_response

        result = analyze_thai_phone(phone)
        if result is None:
            return jsonify({"error": "invalid_phone"}), 400

        reading = await get_phone_reading(result.normalized_phone)
        return jsonify({"ok": True, "ai": reading}), 200

    except ReadingGenerationError as e:
        logger.error(f"Gemini request failed: {e}")
        return jsonify({"error": "gemini_request_failed"}), 502
    except Exception as e:
        logger.error(f"Error generating phone reading: {e}", exc_info=True)
        return jsonify({"error": "unexpected_error", "detail": str(e)}), 500


# Error handlers
@app.errorhandler(400)
def bad_request(error):
    logger.error(f"Bad Request: {error}")
    return jsonify({"error": "Bad Request: " + str(error.description)}), 400

@app.errorhandler(404)
def not_found(error):
    logger.error(f"Not Found: {error}")
    return jsonify({"error": "Not Found: The requested URL was not found on the server."}), 404

@app.errorhandler(405)
def method_not_allowed(error):
    logger.error(f"Method Not Allowed: {error}")
    return jsonify({"error": "Method Not Allowed: " + str(error.description)}), 405

@app.errorhandler(429)
def rate_limit_exceeded(error):
    logger.warning(f"Rate limit exceeded: {error}")
    return jsonify({"error": "Too Many Requests: " + str(error.description)}), 429

@app.errorhandler(500)
def internal_server_error(error):
    logger.error(f"Internal Server Error: {error}", exc_info=True)
    return jsonify({"error": "Internal Server Error: The server encountered an internal error and was unable to complete your request. Please try again later."}), 500

# This is the WSGI application that Uvicorn will serve.
asgi_app = WSGIMiddleware(app)

if __name__ == '__main__':
    # uvicorn app:asgi_app --host 0.0.0.0 --port 8000
    app.run(debug=True, host='0.0.0.0', port=int(os.getenv('PORT', 5000)))
