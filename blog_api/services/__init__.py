# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single aggregate:
#
#   auth_service        : registration, login, own profile and password
#   user_service        : account lookup, public profile, soft deactivation
#   category_service    : category reads and admin-only writes
#   post_service        : CRUD + pagination for Post, with ownership checks
#   engagement_service  : likes, comments, view counts, category counts
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Failures are raised as ``blog_api.exceptions``
# errors and rendered by the handlers registered in ``main``.
