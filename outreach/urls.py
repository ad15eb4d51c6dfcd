from django.urls import path

from . import views

app_name = 'outreach'

urlpatterns = [
    # Analytics
    path('analytics/', views.church_analytics, name='church_analytics'),
    path('teams/<int:team_id>/analytics/', views.team_analytics, name='team_analytics'),
    path('teams/<int:team_id>/engagement-report/', views.team_engagement_report, name='team_engagement_report'),
    path('teams/<int:team_id>/alerts/', views.team_visitor_alerts, name='team_visitor_alerts'),
    path('support-actions/', views.support_actions, name='support_actions'),
    path('alerts/deadlines/', views.deadline_alerts, name='deadline_alerts'),
    path('sweep/', views.run_sweep, name='run_sweep'),

    # Visitors
    path('visitors/', views.register_visitor, name='register_visitor'),
    path('visitors/<int:visitor_id>/metrics/', views.visitor_metrics, name='visitor_metrics'),
    path('visitors/<int:visitor_id>/alerts/', views.visitor_alerts, name='visitor_alerts'),
    path('visitors/<int:visitor_id>/promote/', views.promote_visitor, name='promote_visitor'),
    path('visitors/<int:visitor_id>/visits/', views.record_visit, name='record_visit'),
    path('visitors/<int:visitor_id>/milestones/', views.update_milestone, name='update_milestone'),
    path('visitors/<int:visitor_id>/checklist/', views.update_checklist, name='update_checklist'),
    path('visitors/<int:visitor_id>/convert/', views.record_conversion, name='record_conversion'),
    path('visitors/<int:visitor_id>/status/', views.override_status, name='override_status'),
    path('visitors/<int:visitor_id>/suggestions/', views.submit_feedback,
         {'kind': 'suggestion'}, name='submit_suggestion'),
    path('visitors/<int:visitor_id>/experiences/', views.submit_feedback,
         {'kind': 'experience'}, name='submit_experience'),
    path('visitors/<int:visitor_id>/event-responses/', views.submit_feedback,
         {'kind': 'event_response'}, name='submit_event_response'),
]
