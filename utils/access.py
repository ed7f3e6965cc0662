"""Role scoping for issue queries: admins see all, authorities their department, citizens their own."""
from models import Issue


def scope_issue_query(query, user):
    role = user.role_name if user is not None else ""
    if role == "admin":
        return query
    if role == "authority":
        if user.department_id is None:
            return query.filter(Issue.id.is_(None))
        return query.filter(Issue.department_id == user.department_id)
    if role == "citizen":
        return query.filter(Issue.reporter_id == user.id)
    return query.filter(Issue.id.is_(None))


def issue_visible_to(issue: Issue, user) -> bool:
    """Citizens may read any issue (for upvoting); authorities only their department's."""
    if user is None:
        return False
    if user.role_name in ("admin", "citizen"):
        return True
    if user.role_name == "authority":
        return issue.department_id is None or issue.department_id == user.department_id
    return False
