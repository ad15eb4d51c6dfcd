from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model for church staff, protocol teams and visitors."""
    ROLE_CHOICES = [
        ('bishop', 'Bishop'),
        ('protocol_leader', 'Protocol Team Leader'),
        ('protocol_member', 'Protocol Team Member'),
        ('visitor', 'Visitor'),
    ]

    display_name = models.CharField(max_length=100, blank=True)
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        default='protocol_member',
        db_index=True,
        help_text="Role supplied to the analytics engine for access scoping"
    )

    def __str__(self):
        return self.display_name or self.username

    @property
    def is_bishop(self):
        return self.role == 'bishop' or self.is_superuser

    @property
    def is_protocol_staff(self):
        return self.role in ('protocol_leader', 'protocol_member')

    @property
    def is_visitor(self):
        return self.role == 'visitor'

    def get_protocol_teams(self):
        """Get all active protocol teams this user leads or serves on."""
        from outreach.models import ProtocolTeam
        return ProtocolTeam.objects.filter(
            models.Q(leader=self) | models.Q(members=self),
            is_active=True
        ).distinct()

    def belongs_to_team(self, team):
        """Check if user is the leader or a member of the given team."""
        return team.has_member(self)
