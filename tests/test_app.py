"""
Test suite for ExamStar application
Includes unit tests for configuration and validation, and tests for public and admin routes
"""
import io
import pytest
from datetime import datetime, timezone

from config import config
from fakes import ManualExecutor
from content_store import MAX_BATCH_WRITES, RESOURCES_COL
from models import ClassLevel, ExamEvent, ExamStructure, Resource, Subject
from utils.validators import (
    event_schema, exam_structure_schema, resource_order_schema, resource_schema,
    suggestion_schema, validate_schema,
)


def jee_structure():
    return ExamStructure([Subject('Physics', [ClassLevel('Class 11', ['Kinematics', 'Laws of Motion'])])])


def resource_payload(**overrides):
    data = {
        'examId': 'jee',
        'subject': 'Physics',
        'class': 'Class 11',
        'chapter': 'Kinematics',
        'type': 'note',
        'title': 'Motion in a straight line',
        'fileUrl': 'https://drive.google.com/file/d/abc123/view',
    }
    data.update(overrides)
    return data


# ============================================================================
# CONFIGURATION TESTS
# ============================================================================

class TestConfiguration:
    """Test suite for configuration"""

    def test_development_config(self):
        """Test development configuration"""
        dev_config = config['development']
        assert dev_config.DEBUG is True
        assert dev_config.SESSION_COOKIE_SECURE is False

    def test_production_config(self):
        """Test production configuration"""
        prod_config = config['production']
        assert prod_config.DEBUG is False
        assert prod_config.SESSION_COOKIE_SECURE is True
        assert prod_config.LOG_JSON is True

    def test_testing_config(self):
        """Test testing configuration"""
        test_config = config['testing']
        assert test_config.TESTING is True
        assert test_config.DEBUG is True
        assert test_config.CACHE_DIR is None


# ============================================================================
# VALIDATION TESTS
# ============================================================================

class TestResourceSchema:
    """Test suite for resource validation"""

    def test_valid_resource(self):
        is_valid, resource = validate_schema(resource_schema, resource_payload(year='2023', subtitle='  '))
        assert is_valid is True
        assert isinstance(resource, Resource)
        assert resource.class_level == 'Class 11'
        assert resource.year == '2023'
        assert resource.subtitle is None

    def test_missing_required_fields(self):
        is_valid, errors = validate_schema(resource_schema, {'examId': 'jee'})
        assert is_valid is False
        for field in ('subject', 'class', 'chapter', 'type', 'title', 'fileUrl'):
            assert field in errors

    def test_invalid_year_and_url(self):
        is_valid, errors = validate_schema(resource_schema, resource_payload(year='23', fileUrl='not a url'))
        assert is_valid is False
        assert 'year' in errors
        assert 'fileUrl' in errors

    def test_exam_id_must_be_slug(self):
        is_valid, errors = validate_schema(resource_schema, resource_payload(examId='JEE Main'))
        assert is_valid is False
        assert 'examId' in errors


class TestStructureSchema:
    """Test suite for exam structure validation"""

    def test_valid_structure(self):
        data = {'subjects': [{'name': 'Physics', 'classes': [{'name': 'Class 11', 'chapters': ['Kinematics']}]}]}
        is_valid, structure = validate_schema(exam_structure_schema, data)
        assert is_valid is True
        assert structure.has_chapter('Physics', 'Class 11', 'Kinematics')

    def test_duplicate_subjects_rejected(self):
        data = {'subjects': [{'name': 'Physics'}, {'name': 'Physics'}]}
        is_valid, errors = validate_schema(exam_structure_schema, data)
        assert is_valid is False
        assert 'subjects' in errors

    def test_duplicate_classes_rejected(self):
        data = {'subjects': [{'name': 'Physics', 'classes': [{'name': 'Class 11'}, {'name': 'Class 11'}]}]}
        is_valid, errors = validate_schema(exam_structure_schema, data)
        assert is_valid is False


class TestEventSchema:
    """Test suite for event validation"""

    def test_type_defaults_to_other(self):
        is_valid, result = validate_schema(event_schema, {'title': 'Counselling', 'date': '2025-06-01'})
        assert is_valid is True
        assert result['type'] == 'other'
        assert result['date'] == datetime(2025, 6, 1, tzinfo=timezone.utc)

    def test_epoch_millis_date(self):
        is_valid, result = validate_schema(event_schema, {'title': 'JEE', 'date': 1736467200000, 'type': 'exam'})
        assert is_valid is True
        assert result['date'] == datetime(2025, 1, 10, tzinfo=timezone.utc)

    def test_boolean_date_rejected(self):
        for flag in (True, False):
            is_valid, errors = validate_schema(event_schema, {'title': 'JEE', 'date': flag})
            assert is_valid is False
            assert 'date' in errors

    def test_invalid_type_and_date(self):
        is_valid, errors = validate_schema(event_schema, {'title': 'JEE', 'date': 'someday', 'type': 'party'})
        assert is_valid is False
        assert 'date' in errors
        assert 'type' in errors


class TestOtherSchemas:

    def test_order_items_require_integers(self):
        is_valid, errors = validate_schema(resource_order_schema, {'items': [{'id': 'r1', 'order': '3'}]})
        assert is_valid is False

    def test_suggestion_length(self):
        assert validate_schema(suggestion_schema, {'content': 'More PYQs'})[0] is True
        assert validate_schema(suggestion_schema, {'content': ''})[0] is False
        assert validate_schema(suggestion_schema, {'content': 'x' * 501})[0] is False


# ============================================================================
# PUBLIC ROUTES
# ============================================================================

class TestPublicRoutes:
    """Test suite for public read routes"""

    def test_index_lists_exams_with_status(self, client, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        repo.save_exam('neet', 'NEET UG')
        repo.add_event(ExamEvent(title='JEE Session 1', date=datetime(2099, 1, 10, tzinfo=timezone.utc),
                                 type='exam', exam_id='jee'))
        repo.add_event(ExamEvent(title='Old result', date=datetime(2001, 1, 1, tzinfo=timezone.utc),
                                 type='result'))

        response = client.get('/')
        assert response.status_code == 200
        body = response.get_json()
        exams = {exam['id']: exam for exam in body['exams']}
        assert exams['jee']['status']['state'] == 'upcoming'
        assert exams['neet']['status'] is None
        assert [e['title'] for e in body['events']] == ['JEE Session 1']
        assert body['stale'] is False

    def test_index_unavailable_without_data(self, client, db):
        db.fail_reads = True
        response = client.get('/')
        assert response.status_code == 503

    def test_index_flags_stale_data_after_failed_revalidation(self, app, client, repo, db):
        import app as flask_app
        repo.save_exam('jee', 'JEE Main', jee_structure())
        executor = ManualExecutor()
        app.extensions['home_feed_executor'] = executor
        flask_app.get_home_feed().load()
        executor.run_pending()

        db.fail_reads = True
        response = client.get('/')
        assert response.get_json()['stale'] is False
        executor.run_pending()

        response = client.get('/')
        assert response.status_code == 200
        body = response.get_json()
        assert [exam['id'] for exam in body['exams']] == ['jee']
        assert body['stale'] is True

        db.fail_reads = False
        executor.run_pending()
        assert client.get('/').get_json()['stale'] is False

    def test_index_does_not_queue_overlapping_revalidations(self, app, client, repo):
        import app as flask_app
        repo.save_exam('jee', 'JEE Main')
        executor = ManualExecutor()
        app.extensions['home_feed_executor'] = executor
        flask_app.get_home_feed().load()
        executor.run_pending()

        for _ in range(3):
            assert client.get('/').status_code == 200
        assert len(executor.pending) == 1

    def test_exam_detail(self, client, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        response = client.get('/api/exams/jee')
        assert response.status_code == 200
        exam = response.get_json()['exam']
        assert exam['displayName'] == 'JEE Main'
        assert exam['structure']['subjects'][0]['name'] == 'Physics'

    def test_unknown_exam_is_404(self, client):
        assert client.get('/api/exams/nope').status_code == 404

    def test_resources_require_location(self, client):
        response = client.get('/api/exams/jee/resources?subject=Physics')
        assert response.status_code == 400

    def test_resources_in_display_order(self, client, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        for title in ('A', 'B'):
            repo.add_resource(Resource(exam_id='jee', subject='Physics', class_level='Class 11',
                                       chapter='Kinematics', type='note', title=title,
                                       file_url='https://example.com/x.pdf'))
        response = client.get('/api/exams/jee/resources?subject=Physics&class=Class%2011&chapter=Kinematics')
        assert response.status_code == 200
        assert [r['title'] for r in response.get_json()['resources']] == ['B', 'A']

    def test_cached_reads_follow_version_bumps(self, client, repo):
        repo.bump_version()
        assert client.get('/api/events').get_json()['events'] == []
        repo.add_event(ExamEvent(title='JEE', date=datetime(2099, 1, 10, tzinfo=timezone.utc)))
        assert [e['title'] for e in client.get('/api/events').get_json()['events']] == ['JEE']

    def test_resource_types(self, client):
        response = client.get('/api/resource-types')
        assert response.get_json()['types'] == ['note', 'pyq', 'practice']

    def test_submit_suggestion(self, client, repo):
        response = client.post('/api/suggestions', json={'content': '  Add BITSAT please  '})
        assert response.status_code == 201
        assert [s.content for s in repo.get_suggestions()] == ['Add BITSAT please']

    def test_empty_suggestion_rejected(self, client):
        response = client.post('/api/suggestions', json={'content': ''})
        assert response.status_code == 400
        assert 'content' in response.get_json()['messages']

    def test_robots_txt(self, client):
        response = client.get('/robots.txt')
        assert response.status_code == 200
        assert b'Disallow: /admin/' in response.data
        assert b'Sitemap:' in response.data

    def test_sitemap_lists_exams(self, client, repo):
        repo.save_exam('jee', 'JEE Main')
        response = client.get('/sitemap.xml')
        assert response.status_code == 200
        assert response.mimetype == 'application/xml'
        assert b'/exam/jee</loc>' in response.data


# ============================================================================
# ADMIN GATE
# ============================================================================

class TestAdminGate:
    """Test suite for admin authentication"""

    def test_missing_token(self, client):
        assert client.get('/admin/api/me').status_code == 401

    def test_invalid_token(self, client):
        response = client.get('/admin/api/me', headers={'Authorization': 'Bearer forged'})
        assert response.status_code == 401

    def test_non_admin_is_forbidden(self, client, student_headers):
        response = client.delete('/admin/api/resources/r1', headers=student_headers)
        assert response.status_code == 403

    def test_admin_identity(self, client, admin_headers):
        response = client.get('/admin/api/me', headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()['email'] == 'admin@examstar.test'


# ============================================================================
# ADMIN ROUTES
# ============================================================================

class TestAdminExams:

    def test_save_exam_and_structure(self, client, admin_headers, repo):
        response = client.put('/admin/api/exams/jee', headers=admin_headers, json={'name': 'JEE Main'})
        assert response.status_code == 200
        structure = {'subjects': [{'name': 'Chemistry', 'classes': [{'name': 'Class 12', 'chapters': ['Solutions']}]}]}
        response = client.put('/admin/api/exams/jee/structure', headers=admin_headers, json=structure)
        assert response.status_code == 200
        assert repo.get_exam('jee').name == 'JEE Main'

        response = client.get('/admin/api/exams/jee/structure', headers=admin_headers)
        assert response.get_json()['structure'] == structure

    def test_invalid_exam_id(self, client, admin_headers):
        response = client.put('/admin/api/exams/Not%20A%20Slug', headers=admin_headers, json={'name': 'x'})
        assert response.status_code == 400

    def test_structure_of_missing_exam(self, client, admin_headers):
        assert client.get('/admin/api/exams/nope/structure', headers=admin_headers).status_code == 404

    def test_delete_exam(self, client, admin_headers, repo):
        repo.save_exam('jee', 'JEE Main')
        assert client.delete('/admin/api/exams/jee', headers=admin_headers).status_code == 200
        assert repo.get_exam('jee') is None


class TestAdminResources:

    def test_add_resource_normalizes_drive_link(self, client, admin_headers, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        response = client.post('/admin/api/resources', headers=admin_headers, json=resource_payload())
        assert response.status_code == 201
        resource = response.get_json()['resource']
        assert resource['fileUrl'] == 'https://drive.google.com/file/d/abc123/preview'
        assert resource['order'] == -1

    def test_add_resource_to_unknown_chapter(self, client, admin_headers, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        response = client.post('/admin/api/resources', headers=admin_headers,
                               json=resource_payload(chapter='Thermodynamics'))
        assert response.status_code == 400

    def test_reorder_and_delete(self, client, admin_headers, repo):
        repo.save_exam('jee', 'JEE Main', jee_structure())
        first = client.post('/admin/api/resources', headers=admin_headers, json=resource_payload(title='A'))
        second = client.post('/admin/api/resources', headers=admin_headers, json=resource_payload(title='B'))
        a_id = first.get_json()['resource']['id']
        b_id = second.get_json()['resource']['id']

        response = client.put('/admin/api/resources/order', headers=admin_headers,
                              json={'items': [{'id': a_id, 'order': -5}, {'id': b_id, 'order': 0}]})
        assert response.status_code == 200
        listed = repo.get_resources('jee', 'Physics', 'Class 11', 'Kinematics')
        assert [r.title for r in listed] == ['A', 'B']

        assert client.delete(f'/admin/api/resources/{a_id}', headers=admin_headers).status_code == 200
        assert [r.title for r in repo.get_resources('jee', 'Physics', 'Class 11', 'Kinematics')] == ['B']

    def test_upload_file(self, client, admin_headers, bucket):
        response = client.post('/admin/api/uploads', headers=admin_headers,
                               data={'file': (io.BytesIO(b'%PDF-1.4'), 'kinematics notes.pdf'), 'examId': 'jee'},
                               content_type='multipart/form-data')
        assert response.status_code == 201
        body = response.get_json()
        assert body['path'].startswith('resources/jee/')
        assert body['path'].endswith('-kinematics_notes.pdf')
        assert body['url'].endswith(body['path'])
        assert bucket.objects[body['path']][0] == b'%PDF-1.4'

    def test_upload_requires_file(self, client, admin_headers):
        response = client.post('/admin/api/uploads', headers=admin_headers, data={'examId': 'jee'},
                               content_type='multipart/form-data')
        assert response.status_code == 400


class TestAdminResourceTypes:

    def test_add_rename_delete(self, client, admin_headers, repo):
        response = client.post('/admin/api/resource-types', headers=admin_headers, json={'name': 'video'})
        assert response.status_code == 201
        assert response.get_json()['types'] == ['note', 'pyq', 'practice', 'video']

        response = client.put('/admin/api/resource-types/video', headers=admin_headers, json={'name': 'lecture'})
        assert response.status_code == 200
        assert response.get_json()['resourcesUpdated'] == 0

        response = client.delete('/admin/api/resource-types/lecture', headers=admin_headers)
        assert response.get_json()['types'] == ['note', 'pyq', 'practice']

    def test_partial_rename_is_conflict(self, client, admin_headers, db):
        docs = db.data.setdefault(RESOURCES_COL, {})
        for i in range(MAX_BATCH_WRITES + 5):
            docs[f'r{i}'] = {'examId': 'jee', 'type': 'pyq', 'title': f'paper {i}'}
        db.fail_commits = {2}

        response = client.put('/admin/api/resource-types/pyq', headers=admin_headers, json={'name': 'papers'})

        assert response.status_code == 409
        body = response.get_json()
        assert body['error'] == 'partially_applied'
        assert body['applied'] == MAX_BATCH_WRITES
        assert body['pending'] == 5


class TestAdminEvents:

    def test_event_lifecycle(self, client, admin_headers, repo):
        response = client.post('/admin/api/events', headers=admin_headers,
                               json={'title': 'JEE Session 1', 'date': '2099-01-10', 'type': 'exam', 'examId': 'jee'})
        assert response.status_code == 201
        event_id = response.get_json()['event']['id']

        response = client.put(f'/admin/api/events/{event_id}', headers=admin_headers, json={'title': 'JEE S1'})
        assert response.status_code == 200
        event = repo.get_events()[0]
        assert event.title == 'JEE S1'
        assert event.type == 'exam'

        assert client.delete(f'/admin/api/events/{event_id}', headers=admin_headers).status_code == 200
        assert repo.get_events() == []

    def test_update_missing_event(self, client, admin_headers):
        response = client.put('/admin/api/events/ghost', headers=admin_headers, json={'title': 'x'})
        assert response.status_code == 404

    def test_invalid_event(self, client, admin_headers):
        response = client.post('/admin/api/events', headers=admin_headers, json={'title': 'x'})
        assert response.status_code == 400


class TestAdminSuggestions:

    def test_list_and_delete(self, client, admin_headers, repo):
        suggestion = repo.add_suggestion('Add NDA papers')
        response = client.get('/admin/api/suggestions', headers=admin_headers)
        assert [s['content'] for s in response.get_json()['suggestions']] == ['Add NDA papers']
        assert client.delete(f'/admin/api/suggestions/{suggestion.id}', headers=admin_headers).status_code == 200
        assert repo.get_suggestions() == []


# ============================================================================
# RUN TESTS
# ============================================================================

if __name__ == '__main__':
    pytest.main([__file__, '-v', '--tb=short'])
