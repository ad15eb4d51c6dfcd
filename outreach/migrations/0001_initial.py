import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ProtocolTeam',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('responsibilities', models.JSONField(blank=True, default=list, help_text='List of responsibilities assigned to this team')),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, help_text='Bishop who created the team', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_protocol_teams', to=settings.AUTH_USER_MODEL)),
                ('leader', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='led_protocol_teams', to=settings.AUTH_USER_MODEL)),
                ('members', models.ManyToManyField(blank=True, related_name='protocol_teams', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['name'],
                'indexes': [models.Index(fields=['is_active', 'name'], name='protocol_team_active_idx')],
            },
        ),
        migrations.CreateModel(
            name='Visitor',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('email', models.EmailField(max_length=254, unique=True)),
                ('phone', models.CharField(blank=True, max_length=30)),
                ('address', models.TextField(blank=True)),
                ('age', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(120)])),
                ('occupation', models.CharField(blank=True, max_length=200)),
                ('marital_status', models.CharField(blank=True, choices=[('single', 'Single'), ('married', 'Married'), ('divorced', 'Divorced'), ('widowed', 'Widowed')], max_length=20)),
                ('referred_by', models.CharField(blank=True, max_length=200)),
                ('how_did_you_hear', models.CharField(blank=True, max_length=200)),
                ('previous_church', models.CharField(blank=True, max_length=200)),
                ('emergency_contact_name', models.CharField(blank=True, max_length=200)),
                ('emergency_contact_phone', models.CharField(blank=True, max_length=30)),
                ('emergency_contact_relationship', models.CharField(blank=True, max_length=100)),
                ('visitor_type', models.CharField(choices=[('first-time', 'First Time'), ('from-other-altar', 'From Other Altar'), ('returning', 'Returning')], max_length=20)),
                ('status', models.CharField(choices=[('visiting', 'Visiting'), ('joining', 'Joining')], db_index=True, default='visiting', max_length=20)),
                ('monitoring_start_date', models.DateTimeField(blank=True, null=True)),
                ('monitoring_end_date', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('monitoring_status', models.CharField(choices=[('active', 'Active'), ('completed', 'Completed'), ('converted-to-member', 'Converted to Member'), ('inactive', 'Inactive'), ('needs-attention', 'Needs Attention')], db_index=True, default='active', max_length=20)),
                ('converted_at', models.DateTimeField(blank=True, null=True)),
                ('status_overridden_at', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0)),
                ('can_login', models.BooleanField(default=False)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assigned_protocol_member', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='assigned_visitors', to=settings.AUTH_USER_MODEL)),
                ('converted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='converted_visitors', to=settings.AUTH_USER_MODEL)),
                ('protocol_team', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='visitors', to='outreach.protocolteam')),
                ('registered_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='registered_visitors', to=settings.AUTH_USER_MODEL)),
                ('status_overridden_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='overridden_visitors', to=settings.AUTH_USER_MODEL)),
                ('user', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='visitor_profile', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['protocol_team', 'status'], name='visitor_team_status_idx'),
                    models.Index(fields=['status', 'monitoring_status'], name='visitor_monitoring_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VisitRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('date', models.DateTimeField()),
                ('event_type', models.CharField(default='Sunday Service', max_length=100)),
                ('attendance_status', models.CharField(choices=[('present', 'Present'), ('absent', 'Absent')], max_length=10)),
                ('notes', models.TextField(blank=True)),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='recorded_visits', to=settings.AUTH_USER_MODEL)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='visit_history', to='outreach.visitor')),
            ],
            options={
                'ordering': ['date', 'id'],
                'indexes': [models.Index(fields=['visitor', 'date'], name='visit_visitor_date_idx')],
            },
        ),
        migrations.CreateModel(
            name='Milestone',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('week', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(12)])),
                ('completed', models.BooleanField(default=False)),
                ('notes', models.TextField(blank=True)),
                ('protocol_member_notes', models.TextField(blank=True)),
                ('completed_date', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='milestones', to='outreach.visitor')),
            ],
            options={
                'ordering': ['week'],
                'constraints': [models.UniqueConstraint(fields=('visitor', 'week'), name='unique_visitor_milestone_week')],
            },
        ),
        migrations.CreateModel(
            name='IntegrationChecklist',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('welcome_package', models.BooleanField(default=False)),
                ('home_visit', models.BooleanField(default=False)),
                ('small_group_intro', models.BooleanField(default=False)),
                ('ministry_opportunities', models.BooleanField(default=False)),
                ('mentor_assigned', models.BooleanField(default=False)),
                ('regular_check_ins', models.BooleanField(default=False)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('visitor', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='integration_checklist', to='outreach.visitor')),
            ],
        ),
        migrations.CreateModel(
            name='VisitorSuggestion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('date', models.DateTimeField(default=django.utils.timezone.now)),
                ('message', models.TextField()),
                ('category', models.CharField(choices=[('service', 'Service'), ('facility', 'Facility'), ('community', 'Community'), ('spiritual', 'Spiritual'), ('other', 'Other')], max_length=20)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='suggestions', to='outreach.visitor')),
            ],
            options={
                'ordering': ['date', 'id'],
            },
        ),
        migrations.CreateModel(
            name='VisitorExperience',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('date', models.DateTimeField(default=django.utils.timezone.now)),
                ('rating', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ('message', models.TextField()),
                ('event_type', models.CharField(blank=True, max_length=100)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='experiences', to='outreach.visitor')),
            ],
            options={
                'ordering': ['date', 'id'],
            },
        ),
        migrations.CreateModel(
            name='EventResponse',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('event_name', models.CharField(max_length=200)),
                ('will_attend', models.BooleanField()),
                ('reason', models.TextField(blank=True)),
                ('response_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='event_responses', to='outreach.visitor')),
            ],
            options={
                'ordering': ['response_date', 'id'],
            },
        ),
        migrations.CreateModel(
            name='MonitoringStatusChange',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(blank=True, max_length=20)),
                ('to_status', models.CharField(max_length=20)),
                ('source', models.CharField(choices=[('sweep', 'Lifecycle Sweep'), ('manual', 'Manual Override'), ('conversion', 'Conversion Recorded'), ('promotion', 'Promoted to Joining')], max_length=20)),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='monitoring_status_changes', to=settings.AUTH_USER_MODEL)),
                ('visitor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_changes', to='outreach.visitor')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['visitor', 'created_at'], name='status_change_visitor_idx')],
            },
        ),
        migrations.CreateModel(
            name='ReportCache',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('report_type', models.CharField(choices=[('team_analytics', 'Team Analytics'), ('church_analytics', 'Church Analytics'), ('support_actions', 'Support Actions'), ('engagement_report', 'Engagement Report')], db_index=True, max_length=50)),
                ('parameters', models.JSONField(blank=True, default=dict, help_text='Parameters used to generate this report (window, team, etc.)')),
                ('data', models.JSONField(help_text='The generated report data')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('expires_at', models.DateTimeField(help_text='When this cache entry expires')),
            ],
            options={
                'verbose_name': 'Report Cache',
                'verbose_name_plural': 'Report Caches',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['report_type', 'expires_at'], name='report_cache_type_exp_idx')],
            },
        ),
    ]
