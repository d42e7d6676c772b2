from flask import Flask, request, jsonify, abort, g, Response
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from flask_mail import Mail, Message
from werkzeug.utils import secure_filename
from datetime import datetime, timezone
from xml.sax.saxutils import escape
import os
import re
import uuid
import traceback

import firebase_config
from config import config
from content_store import (
    ContentRepository, ContentStoreError, NotFoundError, PartialUpdateError,
    exam_status, normalize_drive_link,
)
from models import Exam, ExamEvent, Resource
from utils import (
    logger, CacheManager, DataWithCache, build_store, require_admin, validate_schema,
    exam_schema, exam_structure_schema, resource_schema, resource_order_schema,
    resource_type_schema, event_schema, suggestion_schema,
)
from utils.validators import SLUG_PATTERN

# Initialize Flask app with configuration
env = os.environ.get('FLASK_ENV', 'production')
app = Flask(__name__)
config[env].init_app(app)
logger.configure(level=app.config['LOG_LEVEL'], json_output=app.config['LOG_JSON'])

# Initialize rate limiter
disable_rate_limits = (
    env in ('development', 'testing') or
    os.environ.get('DISABLE_RATE_LIMITS', 'False').lower() == 'true'
)
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[app.config['RATE_LIMIT_DEFAULT']],
    enabled=(not disable_rate_limits),
    storage_uri="memory://"
)
# Initialize security headers with Talisman
Talisman(app,
    force_https=app.config['SESSION_COOKIE_SECURE'],
    strict_transport_security=True,
    strict_transport_security_max_age=31536000,
    content_security_policy={
        'default-src': "'self'",
        'img-src': ["'self'", "data:", "https:"],
        'frame-src': ["'self'", "https://drive.google.com"],
    },
    referrer_policy='strict-origin-when-cross-origin'
)
# Initialize Flask-Mail
mail = Mail(app)

HOME_FEED_KEY = 'home:catalogue'
UPLOAD_MAX_BYTES = 25 * 1024 * 1024

# ============================================================================
# SERVICE WIRING

# ============================================================================

def get_repository() -> ContentRepository:
    """Firestore-backed repository, created on first use"""
    repo = app.extensions.get('content_repository')
    if repo is None:
        firebase_config.init_firebase(
            credentials_json=app.config['FIREBASE_CREDENTIALS'],
            credentials_file=app.config['FIREBASE_CREDENTIALS_FILE'],
            storage_bucket=app.config['FIREBASE_STORAGE_BUCKET'],
        )
        repo = ContentRepository(firebase_config.get_db(), bucket=firebase_config.get_bucket())
        app.extensions['content_repository'] = repo
    return repo


def get_cache() -> CacheManager:
    manager = app.extensions.get('cache_manager')
    if manager is None:
        store = build_store(app.config['CACHE_DIR'], app.config['CACHE_MAX_ENTRIES'])
        manager = CacheManager(store, version_reader=lambda: get_repository().read_version())
        app.extensions['cache_manager'] = manager
    return manager


def hydrate_exams(raw):
    return [Exam.from_dict(item) for item in raw]


def hydrate_events(raw):
    return [ExamEvent.from_dict(item) for item in raw]


def hydrate_resources(raw):
    return [Resource.from_dict(item) for item in raw]


def hydrate_catalogue(raw):
    return {'exams': hydrate_exams(raw['exams']), 'events': hydrate_events(raw['events'])}


def load_catalogue():
    repo = get_repository()
    return {'exams': repo.get_all_exams(), 'events': repo.get_events()}


def get_home_feed() -> DataWithCache:
    """Process-wide stale-while-revalidate view of the home catalogue"""
    feed = app.extensions.get('home_feed')
    if feed is None:
        cache = get_cache()
        feed = DataWithCache(
            HOME_FEED_KEY, load_catalogue,
            version_reader=cache.version_reader,
            cache=cache.cache,
            hydrator=hydrate_catalogue,
            executor=app.extensions.get('home_feed_executor'),
        )
        app.extensions['home_feed'] = feed
    return feed


def _validation_error(errors):
    return jsonify({'error': 'Validation error', 'messages': errors}), 400


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        abort(400)
    return data


def _require_slug(exam_id):
    if not re.match(SLUG_PATTERN, exam_id):
        abort(400)

# ============================================================================
# PUBLIC ROUTES

# ============================================================================

@app.route('/')
def index():
    """Home catalogue: exams with their next-exam badge and upcoming events"""
    feed = get_home_feed()
    pending = feed.load()
    if feed.data is None and pending is not None:
        # nothing seen before on this process: wait for the first fetch
        pending.result()
    state = feed.state()
    if state.data is None:
        logger.error("home_feed_unavailable", error=str(state.error))
        return jsonify({'error': 'Service unavailable', 'message': 'Could not load exams'}), 503

    today = datetime.now(timezone.utc).date()
    events = state.data['events']
    exams = [{
        'id': exam.id,
        'name': exam.name,
        'displayName': exam.display_name,
        'status': exam_status(exam.id, events, today),
    } for exam in state.data['exams']]
    upcoming = [e.to_dict() for e in events if e.date.date() >= today]
    stale = state.error is not None or feed.last_error is not None
    return jsonify({'exams': exams, 'events': upcoming, 'stale': stale})


@app.route('/api/exams')
def list_exams():
    cache = get_cache()
    exams = cache.fetch('exams:all', lambda: get_repository().get_all_exams(), hydrator=hydrate_exams)
    return jsonify({'exams': [exam.to_dict() for exam in exams]})


@app.route('/api/exams/<exam_id>')
def exam_detail(exam_id):
    cache = get_cache()
    exam = cache.fetch(cache.generate_key('exam', exam_id),
                       lambda: get_repository().get_exam(exam_id),
                       hydrator=Exam.from_dict)
    if exam is None:
        abort(404)
    return jsonify({'exam': {**exam.to_dict(), 'displayName': exam.display_name}})


@app.route('/api/exams/<exam_id>/resources')
def exam_resources(exam_id):
    subject = request.args.get('subject', '').strip()
    class_level = request.args.get('class', '').strip()
    chapter = request.args.get('chapter', '').strip()
    resource_type = request.args.get('type', '').strip() or None
    if not subject or not class_level or not chapter:
        return _validation_error({'query': ['subject, class and chapter are required.']})
    cache = get_cache()
    key = cache.generate_key('resources', exam_id, subject, class_level, chapter, type=resource_type)
    resources = cache.fetch(
        key,
        lambda: get_repository().get_resources(exam_id, subject, class_level, chapter, resource_type),
        hydrator=hydrate_resources,
    )
    return jsonify({'resources': [r.to_dict() for r in resources]})


@app.route('/api/events')
def list_events():
    cache = get_cache()
    events = cache.fetch('events', lambda: get_repository().get_events(), hydrator=hydrate_events)
    return jsonify({'events': [e.to_dict() for e in events]})


@app.route('/api/resource-types')
def list_resource_types():
    cache = get_cache()
    types = cache.fetch('resource-types', lambda: get_repository().get_resource_types())
    return jsonify({'types': types})


def _notify_admin_of_suggestion(suggestion):
    recipient = app.config.get('ADMIN_EMAIL')
    if not recipient or not app.config.get('MAIL_USERNAME'):
        return False
    try:
        msg = Message(
            subject="[ExamStar] New suggestion",
            sender=app.config.get('MAIL_DEFAULT_SENDER', 'noreply@examstar.app'),
            recipients=[recipient],
            body=f"{suggestion.content}\n\n---\nSubmitted {suggestion.created_at.isoformat()} (id {suggestion.id})"
        )
        mail.send(msg)
        return True
    except Exception as e:
        logger.error("suggestion_email_error", error=str(e), suggestion_id=suggestion.id)
        return False


@app.route('/api/suggestions', methods=['POST'])
@limiter.limit(lambda: app.config['RATE_LIMIT_SUGGESTIONS'])
def submit_suggestion():
    is_valid, result = validate_schema(suggestion_schema, request.get_json(silent=True) or request.form.to_dict())
    if not is_valid:
        return _validation_error(result)
    suggestion = get_repository().add_suggestion(result['content'])
    logger.info("suggestion_submitted", suggestion_id=suggestion.id, ip=request.remote_addr)
    _notify_admin_of_suggestion(suggestion)
    return jsonify({'success': True, 'id': suggestion.id}), 201

# ============================================================================
# SEO

# ============================================================================

@app.route('/robots.txt')
def robots_txt():
    base_url = app.config['BASE_URL'].rstrip('/')
    body = "\n".join([
        "User-agent: *",
        "Allow: /",
        "Disallow: /admin/",
        "Disallow: /login",
        f"Sitemap: {base_url}/sitemap.xml",
        "",
    ])
    return Response(body, mimetype='text/plain')


@app.route('/sitemap.xml')
def sitemap_xml():
    base_url = app.config['BASE_URL'].rstrip('/')
    last_modified = datetime.now(timezone.utc).isoformat()
    exams = get_cache().fetch('exams:all', lambda: get_repository().get_all_exams(), hydrator=hydrate_exams)
    entries = [(base_url, 'daily', '1.0')]
    entries += [(f"{base_url}/exam/{exam.id}", 'weekly', '0.8') for exam in exams]
    urls = "".join(
        f"<url><loc>{escape(loc)}</loc><lastmod>{last_modified}</lastmod>"
        f"<changefreq>{freq}</changefreq><priority>{priority}</priority></url>"
        for loc, freq, priority in entries
    )
    body = ('<?xml version="1.0" encoding="UTF-8"?>'
            f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{urls}</urlset>')
    return Response(body, mimetype='application/xml')

# ============================================================================
# ADMIN API: EXAMS

# ============================================================================

@app.route('/admin/api/me')
@require_admin
def admin_me():
    return jsonify({'email': g.admin.get('email'), 'uid': g.admin.get('uid')})


@app.route('/admin/api/exams/<exam_id>/structure', methods=['GET'])
@require_admin
def admin_get_structure(exam_id):
    structure = get_repository().get_exam_structure(exam_id)
    if structure is None:
        abort(404)
    return jsonify({'examId': exam_id, 'structure': structure.to_dict()})


@app.route('/admin/api/exams/<exam_id>/structure', methods=['PUT'])
@require_admin
def admin_save_structure(exam_id):
    _require_slug(exam_id)
    is_valid, structure = validate_schema(exam_structure_schema, _json_body())
    if not is_valid:
        return _validation_error(structure)
    get_repository().save_exam_structure(exam_id, structure)
    logger.info("exam_structure_saved", exam_id=exam_id, subjects=len(structure.subjects))
    return jsonify({'success': True, 'structure': structure.to_dict()})


@app.route('/admin/api/exams/<exam_id>', methods=['PUT'])
@require_admin
def admin_save_exam(exam_id):
    _require_slug(exam_id)
    is_valid, result = validate_schema(exam_schema, _json_body())
    if not is_valid:
        return _validation_error(result)
    exam = get_repository().save_exam(exam_id, result['name'], result.get('structure'))
    logger.info("exam_saved", exam_id=exam_id)
    return jsonify({'success': True, 'exam': exam.to_dict()})


@app.route('/admin/api/exams/<exam_id>', methods=['DELETE'])
@require_admin
def admin_delete_exam(exam_id):
    get_repository().delete_exam(exam_id)
    logger.info("exam_deleted", exam_id=exam_id)
    return jsonify({'success': True})

# ============================================================================
# ADMIN API: RESOURCES

# ============================================================================

@app.route('/admin/api/resources', methods=['POST'])
@require_admin
def admin_add_resource():
    is_valid, resource = validate_schema(resource_schema, _json_body())
    if not is_valid:
        return _validation_error(resource)
    repo = get_repository()
    structure = repo.get_exam_structure(resource.exam_id)
    if structure is None or not structure.has_chapter(resource.subject, resource.class_level, resource.chapter):
        return _validation_error({'location': ['Unknown exam, subject, class or chapter.']})
    resource.file_url = normalize_drive_link(resource.file_url)
    resource = repo.add_resource(resource)
    return jsonify({'success': True, 'resource': resource.to_dict()}), 201


@app.route('/admin/api/resources/<resource_id>', methods=['DELETE'])
@require_admin
def admin_delete_resource(resource_id):
    get_repository().delete_resource(resource_id)
    logger.info("resource_deleted", resource_id=resource_id)
    return jsonify({'success': True})


@app.route('/admin/api/resources/order', methods=['PUT'])
@require_admin
def admin_reorder_resources():
    is_valid, result = validate_schema(resource_order_schema, _json_body())
    if not is_valid:
        return _validation_error(result)
    get_repository().update_resource_order(result['items'])
    return jsonify({'success': True, 'updated': len(result['items'])})


@app.route('/admin/api/uploads', methods=['POST'])
@require_admin
def admin_upload_file():
    upload = request.files.get('file')
    exam_id = request.form.get('examId', '').strip()
    if upload is None or not upload.filename or not exam_id:
        return _validation_error({'file': ['A file and an examId are required.']})
    _require_slug(exam_id)
    data = upload.read()
    if len(data) > UPLOAD_MAX_BYTES:
        return _validation_error({'file': ['File is too large.']})
    path = f"resources/{exam_id}/{uuid.uuid4().hex}-{secure_filename(upload.filename)}"
    url = get_repository().upload_file(data, path, content_type=upload.mimetype)
    return jsonify({'success': True, 'url': url, 'path': path}), 201

# ============================================================================
# ADMIN API: RESOURCE TYPES

# ============================================================================

@app.route('/admin/api/resource-types', methods=['GET'])
@require_admin
def admin_list_resource_types():
    return jsonify({'types': get_repository().get_resource_types()})


@app.route('/admin/api/resource-types', methods=['POST'])
@require_admin
def admin_add_resource_type():
    is_valid, result = validate_schema(resource_type_schema, _json_body())
    if not is_valid:
        return _validation_error(result)
    types = get_repository().add_resource_type(result['name'])
    return jsonify({'success': True, 'types': types}), 201


@app.route('/admin/api/resource-types/<name>', methods=['PUT'])
@require_admin
def admin_rename_resource_type(name):
    is_valid, result = validate_schema(resource_type_schema, _json_body())
    if not is_valid:
        return _validation_error(result)
    updated = get_repository().update_resource_type(name, result['name'])
    return jsonify({'success': True, 'resourcesUpdated': updated})


@app.route('/admin/api/resource-types/<name>', methods=['DELETE'])
@require_admin
def admin_delete_resource_type(name):
    types = get_repository().delete_resource_type(name)
    return jsonify({'success': True, 'types': types})

# ============================================================================
# ADMIN API: EVENTS

# ============================================================================

@app.route('/admin/api/events', methods=['POST'])
@require_admin
def admin_add_event():
    is_valid, result = validate_schema(event_schema, _json_body())
    if not is_valid:
        return _validation_error(result)
    event = get_repository().add_event(ExamEvent(
        title=result['title'],
        date=result['date'],
        type=result['type'],
        description=result.get('description'),
        exam_id=result.get('examId'),
        link=result.get('link'),
    ))
    logger.info("event_added", event_id=event.id, event_type=event.type)
    return jsonify({'success': True, 'event': event.to_dict()}), 201


@app.route('/admin/api/events/<event_id>', methods=['PUT'])
@require_admin
def admin_update_event(event_id):
    is_valid, result = validate_schema(event_schema, _json_body(), partial=True)
    if not is_valid:
        return _validation_error(result)
    if not result:
        return _validation_error({'_schema': ['No fields to update.']})
    get_repository().update_event(event_id, result)
    return jsonify({'success': True})


@app.route('/admin/api/events/<event_id>', methods=['DELETE'])
@require_admin
def admin_delete_event(event_id):
    get_repository().delete_event(event_id)
    return jsonify({'success': True})

# ============================================================================
# ADMIN API: SUGGESTIONS

# ============================================================================

@app.route('/admin/api/suggestions', methods=['GET'])
@require_admin
def admin_list_suggestions():
    return jsonify({'suggestions': [s.to_dict() for s in get_repository().get_suggestions()]})


@app.route('/admin/api/suggestions/<suggestion_id>', methods=['DELETE'])
@require_admin
def admin_delete_suggestion(suggestion_id):
    get_repository().delete_suggestion(suggestion_id)
    return jsonify({'success': True})

# ============================================================================
# ERROR HANDLERS

# ============================================================================
@app.errorhandler(NotFoundError)
def content_not_found(error):
    logger.warning("content_not_found", error=str(error), path=request.path)
    return jsonify({'error': 'Not found', 'message': str(error)}), 404
@app.errorhandler(PartialUpdateError)
def partial_update(error):
    """Some writes of a multi-document mutation were committed; the caller should retry"""
    logger.error("partial_update", error=str(error), path=request.path, applied=error.applied, pending=error.pending)
    return jsonify({'error': 'partially_applied', 'message': str(error),
                    'applied': error.applied, 'pending': error.pending}), 409
@app.errorhandler(ContentStoreError)
def content_store_error(error):
    logger.error("content_store_error", error=str(error), path=request.path)
    return jsonify({'error': 'Storage error', 'message': str(error)}), 500
@app.errorhandler(400)
def bad_request(error):
    """Handle bad request errors"""
    logger.warning("bad_request", error=str(error), path=request.path)
    return jsonify({'error': 'Bad request', 'message': 'The request could not be understood'}), 400
@app.errorhandler(401)
def unauthorized(error):
    """Handle missing or invalid credentials"""
    logger.security_event("unauthorized_access", ip_address=request.remote_addr, path=request.path)
    return jsonify({'error': 'Unauthorized', 'message': 'Sign in required'}), 401
@app.errorhandler(403)
def forbidden(error):
    """Handle forbidden errors"""
    logger.security_event("forbidden_access", user_id=getattr(g, 'admin', {}).get('uid'), ip_address=request.remote_addr)
    return jsonify({'error': 'Forbidden', 'message': 'Access denied'}), 403
@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    logger.warning("page_not_found", path=request.path, ip=request.remote_addr)
    return jsonify({'error': 'Not found', 'message': 'Resource not found'}), 404
@app.errorhandler(429)
def rate_limit_handler(error):
    """Handle rate limit exceeded"""
    logger.security_event("rate_limit_exceeded", ip_address=request.remote_addr)
    return jsonify({'error': 'Too many requests', 'message': 'Rate limit exceeded. Please try again later.'}), 429
@app.errorhandler(500)
def internal_error(error):
    """Handle internal server errors"""
    logger.error("internal_server_error", error=str(error), path=request.path, traceback=traceback.format_exc())
    return jsonify({'error': 'Internal server error', 'message': 'Something went wrong'}), 500

# ============================================================================
# REQUEST LOGGING

# ============================================================================
@app.before_request
def log_request():
    """Log all incoming requests"""
    logger.debug("request_started",
                 method=request.method,
                 path=request.path,
                 ip=request.remote_addr,
                 user_agent=str(request.user_agent))
@app.after_request
def log_response(response):
    """Log all responses"""
    logger.info("request_completed",
                method=request.method,
                path=request.path,
                status_code=response.status_code,
                ip=request.remote_addr)
    return response
if __name__ == '__main__':
    debug = env == 'development'
    logger.info("application_startup", environment=env, debug=debug)
    app.run(debug=debug, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
