"""
Static role and permission catalog for church tenants.

Roles run from platform-wide ownership down to basic community
membership. Each role lists its base permissions and the roles it may
delegate; delegation is decided by that allow-list alone.
"""

# Scopes a role can operate in
SCOPE_GLOBAL = 'global'
SCOPE_MULTI_TENANT = 'multi-tenant'
SCOPE_SINGLE_TENANT = 'single-tenant'
SCOPE_SUB_UNIT = 'sub-unit'
SCOPE_SUPPORT = 'support'
SCOPE_COMMUNITY = 'community'

SCOPES = (
    SCOPE_GLOBAL,
    SCOPE_MULTI_TENANT,
    SCOPE_SINGLE_TENANT,
    SCOPE_SUB_UNIT,
    SCOPE_SUPPORT,
    SCOPE_COMMUNITY,
)

# Role every user falls back to while privileged capability is on hold
BASELINE_ROLE = 'member'


CANONICAL_PERMISSIONS = [
    # System
    {'name': 'system.manage.all', 'display_name': 'System Management', 'category': 'system',
     'description': 'Full control over platform configuration'},
    {'name': 'settings.manage.system', 'display_name': 'System Settings', 'category': 'settings'},
    {'name': 'billing.manage', 'display_name': 'Billing Management', 'category': 'system'},
    {'name': 'integrations.manage', 'display_name': 'Integration Management', 'category': 'system'},
    {'name': 'backups.manage', 'display_name': 'Backup Management', 'category': 'system'},
    {'name': 'audit.logs.access', 'display_name': 'Audit Logs Access', 'category': 'system',
     'description': 'Read the audit trail of role and credential changes'},
    {'name': 'audit.logs.access.regional', 'display_name': 'Regional Audit Access', 'category': 'system'},

    # Multi-church oversight
    {'name': 'churches.manage.all', 'display_name': 'Church Management', 'category': 'churches'},
    {'name': 'churches.manage.assigned', 'display_name': 'Manage Assigned Churches', 'category': 'multi-church'},
    {'name': 'users.manage.multi_church', 'display_name': 'Multi-Church User Management', 'category': 'multi-church'},
    {'name': 'settings.manage.regional', 'display_name': 'Regional Settings', 'category': 'settings'},

    # Single church
    {'name': 'church.manage.assigned', 'display_name': 'Manage Assigned Church', 'category': 'churches'},
    {'name': 'church.manage.single', 'display_name': 'Manage Church Portal', 'category': 'churches'},
    {'name': 'settings.manage.church', 'display_name': 'Church Settings', 'category': 'settings'},

    # Users and roles
    {'name': 'users.manage.all', 'display_name': 'User Management', 'category': 'users'},
    {'name': 'users.manage.church', 'display_name': 'Church User Management', 'category': 'users'},
    {'name': 'profile.manage.own', 'display_name': 'Manage Own Profile', 'category': 'users'},
    {'name': 'roles.assign.all', 'display_name': 'Role Assignment', 'category': 'roles'},
    {'name': 'roles.assign.church_admin', 'display_name': 'Assign Church Admin', 'category': 'roles'},
    {'name': 'roles.assign.lead_pastor', 'display_name': 'Assign Lead Pastor', 'category': 'roles'},
    {'name': 'roles.assign.pastor', 'display_name': 'Assign Pastor', 'category': 'roles'},
    {'name': 'roles.assign.minister', 'display_name': 'Assign Minister', 'category': 'roles'},
    {'name': 'roles.assign.social_manager', 'display_name': 'Assign Social Manager', 'category': 'roles'},
    {'name': 'roles.assign.staff', 'display_name': 'Assign Staff', 'category': 'roles'},
    {'name': 'roles.assign.member', 'display_name': 'Assign Member', 'category': 'roles'},

    # Content
    {'name': 'content.approve.all', 'display_name': 'Content Approval', 'category': 'content'},
    {'name': 'content.approve.regional', 'display_name': 'Regional Content Approval', 'category': 'content'},
    {'name': 'content.approve.church', 'display_name': 'Church Content Approval', 'category': 'content'},
    {'name': 'content.approve.spiritual', 'display_name': 'Spiritual Content Approval', 'category': 'content'},
    {'name': 'content.moderate.all', 'display_name': 'Content Moderation', 'category': 'content'},
    {'name': 'content.moderate.regional', 'display_name': 'Regional Content Moderation', 'category': 'content'},
    {'name': 'content.moderate.church', 'display_name': 'Church Content Moderation', 'category': 'content'},
    {'name': 'content.moderate.spiritual', 'display_name': 'Spiritual Content Moderation', 'category': 'content'},
    {'name': 'content.moderate.ministry_scope', 'display_name': 'Ministry Scope Moderation', 'category': 'content'},
    {'name': 'content.delete.all', 'display_name': 'Content Deletion', 'category': 'content'},
    {'name': 'content.delete.church', 'display_name': 'Church Content Deletion', 'category': 'content'},
    {'name': 'content.create.all', 'display_name': 'Content Creation', 'category': 'content'},
    {'name': 'content.create.spiritual', 'display_name': 'Spiritual Content Creation', 'category': 'content'},
    {'name': 'content.create.ministry', 'display_name': 'Ministry Content Creation', 'category': 'content'},
    {'name': 'content.create.social', 'display_name': 'Social Content Creation', 'category': 'content'},
    {'name': 'content.create.draft', 'display_name': 'Draft Content Creation', 'category': 'content'},
    {'name': 'content.publish.all', 'display_name': 'Content Publishing', 'category': 'content'},
    {'name': 'content.publish.spiritual', 'display_name': 'Spiritual Content Publishing', 'category': 'content'},
    {'name': 'content.publish.ministry', 'display_name': 'Ministry Content Publishing', 'category': 'content'},
    {'name': 'content.publish.social', 'display_name': 'Social Content Publishing', 'category': 'content'},
    {'name': 'content.submit_for_review', 'display_name': 'Submit Content for Review', 'category': 'content'},
    {'name': 'media.manage.all', 'display_name': 'Media Management', 'category': 'content'},
    {'name': 'media.manage.church', 'display_name': 'Church Media Management', 'category': 'content'},

    # Spiritual
    {'name': 'sermons.create', 'display_name': 'Sermon Creation', 'category': 'spiritual'},
    {'name': 'devotionals.create', 'display_name': 'Devotional Creation', 'category': 'spiritual'},
    {'name': 'bible_studies.create', 'display_name': 'Bible Study Creation', 'category': 'spiritual'},

    # Events
    {'name': 'events.manage.all', 'display_name': 'Event Management', 'category': 'events'},
    {'name': 'events.manage.regional', 'display_name': 'Regional Event Management', 'category': 'events'},
    {'name': 'events.manage.church', 'display_name': 'Church Event Management', 'category': 'events'},
    {'name': 'events.manage.spiritual', 'display_name': 'Spiritual Event Management', 'category': 'events'},
    {'name': 'events.manage.ministry', 'display_name': 'Ministry Event Management', 'category': 'events'},
    {'name': 'events.create', 'display_name': 'Event Creation (toggle)', 'category': 'events',
     'description': 'Optional event creation that can be switched on for support roles'},
    {'name': 'events.create.all', 'display_name': 'Event Creation', 'category': 'events'},
    {'name': 'events.create.spiritual', 'display_name': 'Spiritual Event Creation', 'category': 'events'},
    {'name': 'events.create.ministry', 'display_name': 'Ministry Event Creation', 'category': 'events'},
    {'name': 'events.create.optional', 'display_name': 'Optional Event Creation', 'category': 'events'},
    {'name': 'events.promote.social', 'display_name': 'Social Event Promotion', 'category': 'events'},
    {'name': 'events.assist.admin', 'display_name': 'Event Administration Assistance', 'category': 'events'},
    {'name': 'events.attend', 'display_name': 'Event Attendance', 'category': 'events'},
    {'name': 'events.checkin', 'display_name': 'Event Check-in', 'category': 'events'},

    # Prayers
    {'name': 'prayers.manage.all', 'display_name': 'Prayer Management', 'category': 'prayers'},
    {'name': 'prayers.manage.regional', 'display_name': 'Regional Prayer Management', 'category': 'prayers'},
    {'name': 'prayers.moderate.church', 'display_name': 'Church Prayer Moderation', 'category': 'prayers'},
    {'name': 'prayers.moderate.ministry', 'display_name': 'Ministry Prayer Moderation', 'category': 'prayers'},
    {'name': 'prayers.moderate.ministry_scope', 'display_name': 'Ministry Scope Prayer Moderation',
     'category': 'prayers'},
    {'name': 'prayers.flag.inappropriate', 'display_name': 'Flag Inappropriate Prayers', 'category': 'prayers'},
    {'name': 'prayers.respond.pastoral', 'display_name': 'Pastoral Prayer Response', 'category': 'prayers'},
    {'name': 'prayers.respond.ministry', 'display_name': 'Ministry Prayer Response', 'category': 'prayers'},
    {'name': 'prayers.create', 'display_name': 'Prayer Requests', 'category': 'prayers'},
    {'name': 'prayers.support.members', 'display_name': 'Member Prayer Support', 'category': 'prayers'},
    {'name': 'prayers.support.community', 'display_name': 'Community Prayer Support', 'category': 'prayers'},

    # Discussions
    {'name': 'discussions.manage.all', 'display_name': 'Discussion Management', 'category': 'discussions'},
    {'name': 'discussions.manage.church', 'display_name': 'Church Discussion Management', 'category': 'discussions'},
    {'name': 'discussions.moderate.spiritual', 'display_name': 'Spiritual Discussion Moderation',
     'category': 'discussions'},
    {'name': 'discussions.moderate.ministry_scope', 'display_name': 'Ministry Discussion Moderation',
     'category': 'discussions'},
    {'name': 'discussions.participate.all', 'display_name': 'Discussion Participation', 'category': 'discussions'},
    {'name': 'comments.moderate', 'display_name': 'Comment Moderation (toggle)', 'category': 'discussions',
     'description': 'Optional comment moderation that can be switched on for support roles'},
    {'name': 'comments.moderate.ministry_scope', 'display_name': 'Ministry Comment Moderation',
     'category': 'discussions'},
    {'name': 'comments.moderate.optional', 'display_name': 'Optional Comment Moderation', 'category': 'discussions'},
    {'name': 'comments.create', 'display_name': 'Comment Creation', 'category': 'discussions'},

    # Social and community
    {'name': 'social_media.manage', 'display_name': 'Social Media Management', 'category': 'social'},
    {'name': 'public_posts.create', 'display_name': 'Public Post Creation', 'category': 'social'},
    {'name': 'public_posts.schedule', 'display_name': 'Public Post Scheduling', 'category': 'social'},
    {'name': 'community.engage.all', 'display_name': 'Community Engagement', 'category': 'community'},
    {'name': 'community.like_react', 'display_name': 'Likes and Reactions', 'category': 'community'},
    {'name': 'small_groups.lead', 'display_name': 'Small Group Leadership', 'category': 'community'},
    {'name': 'volunteers.manage.spiritual', 'display_name': 'Spiritual Volunteer Management', 'category': 'community'},
    {'name': 'volunteers.manage.ministry', 'display_name': 'Ministry Volunteer Management', 'category': 'community'},
    {'name': 'volunteer.coordinate', 'display_name': 'Volunteer Coordination (toggle)', 'category': 'community',
     'description': 'Optional volunteer coordination that can be switched on for support roles'},

    # Analytics
    {'name': 'analytics.view.all', 'display_name': 'Analytics Access', 'category': 'analytics'},
    {'name': 'analytics.view.regional', 'display_name': 'Regional Analytics', 'category': 'analytics'},
    {'name': 'analytics.view.church', 'display_name': 'Church Analytics', 'category': 'analytics'},
    {'name': 'analytics.view.ministry', 'display_name': 'Ministry Analytics', 'category': 'analytics'},

    # Member directory
    {'name': 'member_directory.full_access', 'display_name': 'Full Directory Access', 'category': 'directory'},
    {'name': 'member_directory.ministry_access', 'display_name': 'Ministry Directory Access', 'category': 'directory'},
    {'name': 'member_directory.limited_access', 'display_name': 'Limited Directory Access', 'category': 'directory',
     'description': 'View staff, pastors, assigned small group leaders and opted-in public bios'},

    # Administration
    {'name': 'admin.assist.tasks', 'display_name': 'Administrative Assistance', 'category': 'admin'},
]


ROLE_DEFINITIONS = [
    {
        'name': 'owner',
        'display_name': 'Owner',
        'description': 'Complete system control across all churches',
        'level': 1,
        'scope': SCOPE_GLOBAL,
        'requires_two_factor': True,
        'permissions': [
            'system.manage.all', 'users.manage.all', 'churches.manage.all', 'roles.assign.all',
            'content.approve.all', 'content.moderate.all', 'content.delete.all',
            'events.manage.all', 'prayers.manage.all', 'discussions.manage.all',
            'media.manage.all', 'analytics.view.all', 'settings.manage.system',
            'billing.manage', 'integrations.manage', 'backups.manage', 'audit.logs.access',
        ],
        'delegable_roles': [
            'regional_admin', 'super_admin', 'church_admin', 'lead_pastor', 'pastor',
            'minister', 'social_manager', 'staff', 'member',
        ],
    },
    {
        'name': 'regional_admin',
        'display_name': 'Regional Admin',
        'description': 'Manages multiple assigned churches for denominations or regions',
        'level': 2,
        'scope': SCOPE_MULTI_TENANT,
        'requires_two_factor': True,
        'permissions': [
            'churches.manage.assigned', 'users.manage.multi_church',
            'roles.assign.church_admin', 'roles.assign.lead_pastor', 'roles.assign.pastor',
            'content.approve.regional', 'content.moderate.regional', 'events.manage.regional',
            'prayers.manage.regional', 'analytics.view.regional', 'settings.manage.regional',
            'audit.logs.access.regional',
        ],
        'delegable_roles': [
            'church_admin', 'lead_pastor', 'pastor', 'minister', 'social_manager', 'staff', 'member',
        ],
    },
    {
        'name': 'super_admin',
        'display_name': 'Super Admin',
        'description': 'Full control within assigned churches',
        'level': 3,
        'scope': SCOPE_SINGLE_TENANT,
        'requires_two_factor': True,
        'permissions': [
            'church.manage.assigned', 'users.manage.church',
            'roles.assign.church_admin', 'roles.assign.lead_pastor', 'roles.assign.pastor',
            'roles.assign.minister', 'content.approve.all', 'content.moderate.all',
            'content.delete.church', 'events.manage.all', 'prayers.manage.all',
            'discussions.manage.all', 'media.manage.church', 'analytics.view.church',
            'settings.manage.church', 'audit.logs.access',
        ],
        'delegable_roles': [
            'church_admin', 'lead_pastor', 'pastor', 'minister', 'social_manager', 'staff', 'member',
        ],
    },
    {
        'name': 'church_admin',
        'display_name': 'Church Admin',
        'description': 'Manages one church portal and users',
        'level': 4,
        'scope': SCOPE_SINGLE_TENANT,
        'requires_two_factor': True,
        'permissions': [
            'church.manage.single', 'users.manage.church',
            'roles.assign.lead_pastor', 'roles.assign.pastor', 'roles.assign.minister',
            'roles.assign.social_manager', 'roles.assign.staff', 'roles.assign.member',
            'content.approve.church', 'content.moderate.church', 'events.manage.church',
            'prayers.moderate.church', 'discussions.manage.church', 'analytics.view.church',
            'settings.manage.church', 'member_directory.full_access',
        ],
        'delegable_roles': ['lead_pastor', 'pastor', 'minister', 'social_manager', 'staff', 'member'],
    },
    {
        'name': 'lead_pastor',
        'display_name': 'Lead Pastor',
        'description': 'Posts and approves spiritual content',
        'level': 5,
        'scope': SCOPE_SINGLE_TENANT,
        'requires_two_factor': True,
        'permissions': [
            'content.create.all', 'content.publish.all', 'content.approve.spiritual',
            'content.moderate.spiritual', 'sermons.create', 'devotionals.create',
            'bible_studies.create', 'events.create.spiritual', 'events.manage.spiritual',
            'prayers.respond.pastoral', 'prayers.moderate.church', 'discussions.moderate.spiritual',
            'analytics.view.ministry', 'member_directory.ministry_access', 'volunteers.manage.spiritual',
        ],
        'delegable_roles': ['pastor', 'minister', 'staff', 'member'],
    },
    {
        'name': 'pastor',
        'display_name': 'Pastor',
        'description': 'Creates sermons, devotionals, responds to prayers',
        'level': 6,
        'scope': SCOPE_SUB_UNIT,
        'requires_two_factor': True,
        'permissions': [
            'content.create.spiritual', 'content.publish.spiritual', 'sermons.create',
            'devotionals.create', 'bible_studies.create', 'events.create.ministry',
            'events.manage.ministry', 'prayers.respond.pastoral', 'prayers.moderate.ministry',
            'discussions.participate.all', 'member_directory.ministry_access',
            'volunteers.manage.ministry',
        ],
        'delegable_roles': ['minister', 'staff', 'member'],
    },
    {
        'name': 'minister',
        'display_name': 'Minister',
        'description': 'Handles specific ministries and member responses, with ministry-scoped moderation',
        'level': 7,
        'scope': SCOPE_SUB_UNIT,
        'requires_two_factor': True,
        'permissions': [
            'content.create.ministry', 'content.publish.ministry', 'events.create.ministry',
            'events.manage.ministry', 'prayers.respond.ministry', 'prayers.moderate.ministry_scope',
            'prayers.flag.inappropriate', 'discussions.moderate.ministry_scope',
            'comments.moderate.ministry_scope', 'discussions.participate.all',
            'member_directory.ministry_access', 'volunteers.manage.ministry', 'small_groups.lead',
        ],
        'delegable_roles': ['staff', 'member'],
    },
    {
        'name': 'social_manager',
        'display_name': 'Social Manager',
        'description': 'Manages public posts and social content',
        'level': 8,
        'scope': SCOPE_SUB_UNIT,
        'requires_two_factor': False,
        'permissions': [
            'content.create.social', 'content.publish.social', 'social_media.manage',
            'public_posts.create', 'public_posts.schedule', 'events.promote.social',
            'discussions.participate.all', 'community.engage.all',
        ],
        'delegable_roles': ['staff', 'member'],
    },
    {
        'name': 'staff',
        'display_name': 'Staff',
        'description': 'Flexible support role with optional permissions',
        'level': 9,
        'scope': SCOPE_SUPPORT,
        'requires_two_factor': True,
        'permissions': [
            'content.create.draft', 'content.submit_for_review', 'events.create.optional',
            'events.assist.admin', 'comments.moderate.optional', 'prayers.create',
            'prayers.support.members', 'discussions.participate.all', 'community.engage.all',
            'admin.assist.tasks',
        ],
        'delegable_roles': ['member'],
        'toggleable_permissions': ['events.create', 'comments.moderate', 'volunteer.coordinate'],
    },
    {
        'name': 'member',
        'display_name': 'Member',
        'description': 'Basic community participation with defined directory access',
        'level': 10,
        'scope': SCOPE_COMMUNITY,
        'requires_two_factor': False,
        'permissions': [
            'content.submit_for_review', 'prayers.create', 'prayers.support.community',
            'discussions.participate.all', 'comments.create', 'community.like_react',
            'events.attend', 'events.checkin', 'member_directory.limited_access',
            'profile.manage.own',
        ],
        'delegable_roles': [],
        'directory_access': {
            'can_view': ['staff', 'pastors', 'assigned_small_group_leaders', 'public_bios_opt_in'],
            'cannot_view': ['private_profiles', 'other_members_full_info'],
        },
    },
]


ROLE_TEMPLATES = [
    {
        'name': 'small_church',
        'display_name': 'Small Church (Under 50)',
        'description': 'Simplified roles for smaller congregations',
        'recommended_roles': ['church_admin', 'lead_pastor', 'staff', 'member'],
        'auto_assign_permissions': {
            'staff': ['events.create.optional', 'comments.moderate.optional'],
        },
    },
    {
        'name': 'mid_size_church',
        'display_name': 'Mid-size Church',
        'description': 'Balanced structure for growing churches',
        'recommended_roles': ['church_admin', 'lead_pastor', 'pastor', 'minister', 'staff', 'member'],
        'auto_assign_permissions': {
            'minister': ['prayers.moderate.ministry_scope', 'discussions.moderate.ministry_scope'],
            'staff': ['events.create.optional'],
        },
    },
    {
        'name': 'large_church',
        'display_name': 'Large Church with Ministries',
        'description': 'Full role structure for complex organizations',
        'recommended_roles': [
            'church_admin', 'lead_pastor', 'pastor', 'minister', 'social_manager', 'staff', 'member',
        ],
        'auto_assign_permissions': {
            'minister': [
                'prayers.moderate.ministry_scope', 'discussions.moderate.ministry_scope',
                'comments.moderate.ministry_scope',
            ],
            'staff': ['events.create.optional', 'comments.moderate.optional', 'volunteer.coordinate'],
        },
    },
    {
        'name': 'multi_church_network',
        'display_name': 'Multi-Church Network',
        'description': 'Regional or denominational oversight structure',
        'recommended_roles': [
            'regional_admin', 'church_admin', 'lead_pastor', 'pastor', 'minister',
            'social_manager', 'staff', 'member',
        ],
        'auto_assign_permissions': {
            'regional_admin': ['audit.logs.access.regional'],
            'minister': ['prayers.moderate.ministry_scope', 'discussions.moderate.ministry_scope'],
            'staff': ['events.create.optional', 'comments.moderate.optional'],
        },
    },
]
