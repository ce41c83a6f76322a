"""
Studio Portal
Deliverable comment helpers.

    - build_comment_tree: nest a flat comment list into reply threads
    - comment_notification: title / message / link for a new comment

The tree is built iteratively (explicit stack, no recursion), so a deep
reply chain cannot exhaust the interpreter's recursion limit.
"""

MESSAGE_PREVIEW_CHARS = 100


def build_comment_tree(comments):
    """Return root comment dicts, each with a nested ``replies`` list.

    ``comments`` is the flat list for one deliverable. Children keep the
    input order (oldest first when the caller sorts by created_at). A
    comment whose parent is missing from the list is treated as a root.
    """
    nodes = {}
    children = {}
    roots = []
    for comment in comments:
        nodes[comment.id] = dict(comment.to_dict(), replies=[])
        children.setdefault(comment.parent_id, []).append(comment.id)

    for comment in comments:
        if comment.parent_id is None or comment.parent_id not in nodes:
            roots.append(comment.id)

    # Depth-first attach; each node is pushed exactly once.
    stack = list(reversed(roots))
    while stack:
        node_id = stack.pop()
        child_ids = children.get(node_id, [])
        nodes[node_id]["replies"] = [nodes[cid] for cid in child_ids]
        stack.extend(reversed(child_ids))

    return [nodes[rid] for rid in roots]


def preview(content, limit=MESSAGE_PREVIEW_CHARS):
    return content[:limit] + "..." if len(content) > limit else content


def comment_notification(*, author_name, deliverable, content, is_reply, project_id):
    """Notification fields shared by every recipient of one comment."""
    if is_reply:
        title = f'{author_name} replied to a comment on "{deliverable.title}"'
    else:
        title = f'{author_name} commented on "{deliverable.title}"'
    return {
        "type": "COMMENT_REPLY" if is_reply else "COMMENT",
        "title": title,
        "message": preview(content),
        "link": f"/internal/projects/{project_id}/kanban",
    }
