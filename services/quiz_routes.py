from flask import jsonify, request

from backend import work_items
from backend.errors import AuthorizationError, NotFoundError
from models import QuizAttempt, QuizTemplate, ROLE_ADMIN, ROLE_STUDENT, SOURCE_QUIZ, STAFF_ROLES, StudentQuiz, db
from services.auth_service import require_role, require_user
from services.work_item_handlers import (
    create_request,
    field,
    get_record,
    list_group_items,
    list_requests,
    list_student_items,
    parse_group_ids,
    parse_template_fields,
    review_request,
)


def create_quiz():
    user = require_role(*STAFF_ROLES)
    data = request.get_json(silent=True) or {}
    fields = parse_template_fields(data)
    template, records = work_items.create_quiz(fields, parse_group_ids(data), user)
    payload = template.to_dict(include_answers=True)
    payload['student_count'] = len(records)
    return jsonify({'success': True, 'data': payload}), 201


def _get_template_for_write(template_id, user):
    template = get_record(QuizTemplate, template_id, 'Quiz template')
    if user.role != ROLE_ADMIN and template.creator_id != user.id:
        raise AuthorizationError('Not authorized to modify this quiz')
    return template


def update_template(template_id):
    user = require_role(*STAFF_ROLES)
    template = _get_template_for_write(template_id, user)
    data = request.get_json(silent=True) or {}
    template = work_items.update_quiz_template(template, parse_template_fields(data, partial=True))
    return jsonify({'success': True, 'data': template.to_dict(include_answers=True)})


def delete_template(template_id):
    user = require_role(*STAFF_ROLES)
    template = _get_template_for_write(template_id, user)
    removed = work_items.delete_quiz_template(template)
    return jsonify({'success': True, 'data': {'removed_student_quizzes': removed}})


def student_quizzes():
    return list_student_items(StudentQuiz)


def group_quizzes(group_id):
    return list_group_items(StudentQuiz, group_id)


def start_quiz(quiz_id):
    """Start (or resume) the caller's attempt at quiz template `quiz_id`."""
    user = require_role(ROLE_STUDENT)
    record = StudentQuiz.query.filter_by(template_id=quiz_id, student_id=user.id).first()
    if not record:
        raise AuthorizationError('Not authorized to take this quiz')
    attempt, created = work_items.start_quiz(record)
    payload = {
        'success': True,
        'data': {
            'attempt': attempt.to_dict(),
            'expires_at': attempt.expires_at().isoformat(),
            'quiz': record.template.to_dict() if record.template else None,
        },
    }
    if not created:
        payload['message'] = 'Existing in-progress attempt found'
    return jsonify(payload), 201 if created else 200


def _get_attempt(attempt_id):
    attempt = db.session.get(QuizAttempt, attempt_id)
    if not attempt:
        raise NotFoundError('Attempt not found')
    return attempt


def submit_attempt(attempt_id):
    user = require_role(ROLE_STUDENT)
    attempt = _get_attempt(attempt_id)
    if attempt.student_quiz.student_id != user.id:
        raise AuthorizationError('Not authorized to access this attempt')
    data = request.get_json(silent=True) or {}
    attempt = work_items.submit_quiz_attempt(attempt, data.get('answers'))
    return jsonify({
        'success': True,
        'data': {
            'attempt': attempt.to_dict(),
            'student_quiz': attempt.student_quiz.to_dict(),
        },
    })


def save_answer(attempt_id):
    user = require_role(ROLE_STUDENT)
    attempt = _get_attempt(attempt_id)
    if attempt.student_quiz.student_id != user.id:
        raise AuthorizationError('Not authorized to access this attempt')
    data = request.get_json(silent=True) or {}
    attempt = work_items.save_attempt_answer(
        attempt,
        field(data, 'questionIndex', 'question_index'),
        field(data, 'selectedOption', 'selected_option'),
    )
    return jsonify({'success': True, 'data': attempt.to_dict()})


def attempt_results(attempt_id):
    user = require_user()
    attempt = _get_attempt(attempt_id)
    return jsonify({'success': True, 'data': work_items.attempt_results(attempt, user)})


def grade_quiz(student_quiz_id):
    user = require_role(*STAFF_ROLES)
    record = get_record(StudentQuiz, student_quiz_id, 'Quiz')
    data = request.get_json(silent=True) or {}
    record = work_items.grade_quiz(record, field(data, 'score'), data.get('feedback'), user)
    return jsonify({'success': True, 'data': record.to_dict()})


def create_quiz_request():
    return create_request(SOURCE_QUIZ)


def list_quiz_requests():
    return list_requests(SOURCE_QUIZ)


def review_quiz_request(request_id):
    return review_request(SOURCE_QUIZ, request_id)
