"""
Tests for visitor write operations.
"""
from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model

from outreach import services
from outreach.exceptions import NotFoundError, ValidationError
from outreach.models import (
    IntegrationChecklist,
    Milestone,
    MonitoringStatusChange,
    VisitRecord,
    Visitor,
)

User = get_user_model()


@pytest.fixture
def registration(team_alpha, member_alpha):
    return {
        'name': 'Grace Newcomer',
        'email': 'Grace@Example.com',
        'visitor_type': 'first-time',
        'protocol_team': team_alpha,
        'assigned_protocol_member': member_alpha,
        'phone': '555-0101',
        'age': 34,
        'marital_status': 'married',
        'how_did_you_hear': 'Friend',
    }


@pytest.mark.django_db
class TestRegisterVisitor:

    def test_register_visiting(self, registration, leader_alpha, now):
        result = services.register_visitor(registration, registered_by=leader_alpha, now=now)

        visitor = result.visitor
        assert visitor.email == 'grace@example.com'
        assert visitor.status == 'visiting'
        assert visitor.can_login is False
        assert visitor.monitoring_end_date is None
        assert visitor.created_at == now
        assert result.credentials is None

    def test_register_joining_starts_monitoring(self, registration, now):
        registration['status'] = 'joining'

        result = services.register_visitor(registration, now=now)

        visitor = Visitor.objects.get(pk=result.visitor.pk)
        assert visitor.status == 'joining'
        assert visitor.can_login is True
        assert visitor.monitoring_end_date - visitor.monitoring_start_date == timedelta(days=84)
        assert result.credentials.username == 'grace@example.com'

    def test_accepts_primary_keys(self, registration, team_alpha, member_alpha, now):
        registration['protocol_team'] = team_alpha.pk
        registration['assigned_protocol_member'] = str(member_alpha.pk)

        visitor = services.register_visitor(registration, now=now).visitor

        assert visitor.protocol_team == team_alpha
        assert visitor.assigned_protocol_member == member_alpha

    def test_blank_age_from_form_is_optional(self, registration, now):
        registration['age'] = ''

        visitor = services.register_visitor(registration, now=now).visitor

        assert visitor.age is None

    @pytest.mark.parametrize('field,value', [
        ('name', ''),
        ('email', 'not-an-email'),
        ('visitor_type', 'tourist'),
        ('status', 'member'),
        ('age', 0),
        ('age', 121),
        ('age', 'thirty'),
        ('marital_status', 'complicated'),
        ('assigned_protocol_member', None),
    ])
    def test_rejects_invalid_input(self, registration, field, value):
        registration[field] = value

        with pytest.raises(ValidationError):
            services.register_visitor(registration)
        assert not Visitor.objects.exists()

    def test_member_must_belong_to_team(self, registration, leader_beta):
        registration['assigned_protocol_member'] = leader_beta

        with pytest.raises(ValidationError):
            services.register_visitor(registration)

    def test_unknown_team(self, registration):
        registration['protocol_team'] = 9999

        with pytest.raises(NotFoundError):
            services.register_visitor(registration)

    def test_duplicate_email(self, registration, now):
        services.register_visitor(dict(registration), now=now)
        registration['email'] = 'grace@example.COM'

        with pytest.raises(ValidationError):
            services.register_visitor(registration, now=now)


@pytest.mark.django_db
class TestPromoteToJoining:

    def test_promotion(self, make_visitor, bishop, now):
        visitor = make_visitor(name='Joining Soon')

        credentials = services.promote_to_joining(visitor, actor=bishop, now=now)

        visitor.refresh_from_db()
        assert visitor.monitoring_start_date == now
        assert visitor.monitoring_end_date == now + timedelta(days=84)
        assert visitor.monitoring_status == 'active'
        assert list(visitor.milestones.values_list('week', flat=True)) == list(range(1, 13))
        assert IntegrationChecklist.objects.filter(visitor=visitor).exists()

        user = User.objects.get(username=credentials.username)
        assert user.role == 'visitor'
        assert user.check_password(credentials.temporary_password)
        assert visitor.user == user

        change = MonitoringStatusChange.objects.get(visitor=visitor)
        assert change.source == 'promotion'
        assert change.actor == bishop

    def test_already_joining(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.promote_to_joining(visitor, now=now)

    def test_existing_login(self, make_visitor, now):
        visitor = make_visitor()
        User.objects.create_user(username=visitor.email, password='x')

        with pytest.raises(ValidationError):
            services.promote_to_joining(visitor, now=now)
        visitor.refresh_from_db()
        assert visitor.status == 'visiting'


@pytest.mark.django_db
class TestRecordVisit:

    def test_appends_and_bumps_version(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=7))

        services.record_visit(visitor, now - timedelta(days=1), 'present')

        visitor.refresh_from_db()
        assert visitor.visit_history.count() == 1
        assert visitor.version == 1

    def test_unknown_attendance_status(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.record_visit(visitor, now, 'late')
        assert not VisitRecord.objects.exists()

    def test_sunday_attendance_completes_milestones(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=60))

        for weeks_ago in range(4, 0, -1):
            services.record_visit(visitor, now - timedelta(weeks=weeks_ago), 'present')
        services.record_visit(visitor, now, 'present', event_type='Bible Study')

        completed = set(Milestone.objects.filter(visitor=visitor, completed=True).values_list('week', flat=True))
        assert completed == {5, 7}

    def test_visit_records_are_immutable(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)
        record = services.record_visit(visitor, now, 'absent')

        record.attendance_status = 'present'
        with pytest.raises(ValidationError):
            record.save()


@pytest.mark.django_db
class TestMilestonesAndChecklist:

    def test_complete_and_reopen_milestone(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=14))

        milestone = services.update_milestone(visitor, 3, completed=True, notes='Met the pastor', now=now)
        assert milestone.completed_date == now
        assert milestone.notes == 'Met the pastor'

        milestone = services.update_milestone(visitor, 3, completed=False)
        assert milestone.completed_date is None

    @pytest.mark.parametrize('week', [0, 13, '3', True])
    def test_invalid_week(self, make_visitor, now, week):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.update_milestone(visitor, week, completed=True)

    def test_visiting_visitor_has_no_milestones(self, make_visitor):
        with pytest.raises(ValidationError):
            services.update_milestone(make_visitor(), 1, completed=True)

    def test_update_checklist(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        checklist = services.update_checklist(visitor, {'welcome_package': True, 'home_visit': True})

        assert checklist.completed_count == 2
        assert Visitor.objects.get(pk=visitor.pk).get_metrics(now)['integration_progress'] == 33

    def test_unknown_checklist_item(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.update_checklist(visitor, {'baptism': True})

    def test_checklist_values_must_be_booleans(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.update_checklist(visitor, {'home_visit': 'yes'})


@pytest.mark.django_db
class TestFeedback:

    def test_suggestion(self, make_visitor, now):
        entry = services.add_suggestion(make_visitor(), ' Louder mics ', 'service', now=now)
        assert entry.message == 'Louder mics'
        assert entry.date == now

    def test_experience_rating_range(self, make_visitor):
        visitor = make_visitor()
        for rating in (0, 6, 4.5, '4'):
            with pytest.raises(ValidationError):
                services.add_experience(visitor, rating, 'Nice')
        assert services.add_experience(visitor, 5, 'Wonderful').rating == 5

    def test_event_response(self, make_visitor):
        entry = services.add_event_response(make_visitor(), 'Picnic', False, reason='Travelling')
        assert entry.will_attend is False

    def test_event_response_requires_name(self, make_visitor):
        with pytest.raises(ValidationError):
            services.add_event_response(make_visitor(), ' ', True)


@pytest.mark.django_db
class TestStatusChanges:

    def test_record_conversion(self, make_visitor, bishop, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=50))

        services.record_conversion(visitor, actor=bishop, now=now)

        visitor.refresh_from_db()
        assert visitor.monitoring_status == 'converted-to-member'
        assert visitor.converted_at == now
        assert visitor.converted_by == bishop
        assert MonitoringStatusChange.objects.get(visitor=visitor).source == 'conversion'

    def test_conversion_requires_joining(self, make_visitor, bishop):
        with pytest.raises(ValidationError):
            services.record_conversion(make_visitor(), actor=bishop)

    def test_conversion_only_once(self, make_visitor, bishop, now):
        visitor = make_visitor(monitoring_start=now)
        services.record_conversion(visitor, actor=bishop, now=now)

        with pytest.raises(ValidationError):
            services.record_conversion(visitor, actor=bishop, now=now)

    def test_override(self, make_visitor, leader_alpha, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=10))

        services.override_monitoring_status(visitor, 'needs-attention', actor=leader_alpha,
                                            reason='Family emergency', now=now)

        visitor.refresh_from_db()
        assert visitor.monitoring_status == 'needs-attention'
        assert visitor.status_overridden_at == now
        change = MonitoringStatusChange.objects.get(visitor=visitor)
        assert (change.from_status, change.to_status, change.source) == ('active', 'needs-attention', 'manual')

    def test_override_cannot_convert(self, make_visitor, leader_alpha, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(ValidationError):
            services.override_monitoring_status(visitor, 'converted-to-member', actor=leader_alpha)

    def test_lookups_raise_not_found(self, db):
        with pytest.raises(NotFoundError):
            services.get_visitor(12345)
        with pytest.raises(NotFoundError):
            services.get_team('abc')
