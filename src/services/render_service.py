"""
Render engine for the cached HTML of comments and bookmarks.

Every comment row caches two fragments:

- `innerRender`: the comment body, its link/edit controls and its timestamp.
- `fullRender`: the bookmark header (anchored per sibling), the inner fragment,
  the sibling navigation ("coda") and the bookmark footer.

Every bookmark row caches `render`: the header on the first line, then the inner
fragments of its comments newest-first, then the footer. Adding a comment splices
its inner fragment right after the first newline instead of re-rendering the
whole bookmark, so the header must always be exactly one line.

Sibling navigation depends on numComments and is therefore kept out of the inner
fragment: a bookmark render never goes stale when a sibling is added.

Pure functions (`render_*`) take immutable context values. The `rerender_*`,
`fast_update_*` and `on_*` functions persist through the session and do not
commit; the caller owns the transaction.
"""
import html
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.comment import Comment
from services.exceptions import RenderIntegrityError
from services.utils import now_ms

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_LINE_BREAKS = re.compile(r"[\r\n]+")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass(frozen=True)
class CoreBookmark:
    """The bookmark fields a render depends on."""

    id: int
    url: str
    title: str
    num_comments: int

    @classmethod
    def from_row(cls, bookmark: Bookmark) -> "CoreBookmark":
        """Snapshot a Bookmark row."""
        return cls(
            id=bookmark.id,
            url=bookmark.url,
            title=bookmark.title,
            num_comments=bookmark.num_comments,
        )


@dataclass(frozen=True)
class CoreComment:
    """The comment fields a render depends on."""

    id: int
    content: str
    created_time: float
    modified_time: float
    sibling_idx: int | None

    @classmethod
    def from_row(cls, comment: Comment) -> "CoreComment":
        """Snapshot a Comment row."""
        return cls(
            id=comment.id,
            content=comment.content,
            created_time=comment.created_time,
            modified_time=comment.modified_time,
            sibling_idx=comment.sibling_idx,
        )


@dataclass(frozen=True)
class CommentRender:
    """The two cached fragments of a comment."""

    inner: str
    full: str


def format_timestamp(ms: float) -> str:
    """Format epoch milliseconds as ISO-8601 UTC with millisecond precision."""
    moment = _EPOCH + timedelta(milliseconds=ms)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _control_picture(match: re.Match) -> str:
    code = ord(match.group(0))
    # U+2400 block: one visible glyph per C0 control, U+2421 for DEL
    return "␡" if code == 0x7F else chr(0x2400 + code)


def encode_title(title: str) -> str:
    """Escape a title for HTML, collapsing line breaks to '↲' and showing other controls."""
    single_line = _LINE_BREAKS.sub("↲", title)
    return html.escape(_CONTROL_CHARS.sub(_control_picture, single_line))


def encode_url(url: str) -> str:
    """Escape a URL for an attribute or text node, percent-encoding line breaks."""
    return html.escape(url.replace("\r", "%0D").replace("\n", "%0A"))


def url_hostname(url: str) -> str | None:
    """Hostname of a well-formed absolute URL, None for anything else."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not hostname:
        return None
    return hostname


def render_bookmark_header(bookmark: CoreBookmark, id_suffix: str = "") -> tuple[str, str]:
    """
    Render the opening and closing HTML that wraps a bookmark.

    The same bookmark appears once per comment in the comment feed, so
    `id_suffix` keeps the anchor ids distinct.

    Returns:
        (pre, post). Neither contains a newline.

    Raises:
        RenderIntegrityError: If the output would span several lines.
    """
    anchor = f"bookmark-{bookmark.id}{id_suffix}"
    url = bookmark.url
    title = bookmark.title

    header = ""
    if url and title:
        hostname = url_hostname(url)
        snippet = (
            f' <small class="url-snippet">{html.escape(hostname)}</small>' if hostname else ""
        )
        header = f'<a href="{encode_url(url)}">{encode_title(title)}</a>{snippet}'
    elif url:
        header = f'<a href="{encode_url(url)}">{encode_url(url)}</a>'
    elif title:
        header = encode_title(title)
    header += f' <a title="Link to this bookmark" href="#{anchor}" class="emojilink">🔗</a>'
    header += (
        f' <a title="Add a comment" id="add-comment-button-{bookmark.id}" href="#"'
        ' class="emojilink add-comment-button comment-button">💌</a>'
    )
    header += (
        f' <a title="See raw snapshot" href="/backup/{bookmark.id}" class="emojilink">💁</a>'
    )
    header += (
        f' <a title="See just this bookmark (and delete it)" href="/bookmark/{bookmark.id}"'
        ' class="emojilink">💥</a>'
    )

    pre = f'<div id="{anchor}" class="bookmark"><span class="bookmark-header">{header}</span>'
    post = "</div>"
    if "\n" in pre or "\n" in post:
        raise RenderIntegrityError(f"Header of bookmark {bookmark.id} spans several lines")
    return pre, post


def render_coda(sibling_idx: int, bookmark: CoreBookmark) -> str:
    """Render the navigation between a comment and its older/newer siblings."""
    parts = ['<span class="coda">']
    if sibling_idx < bookmark.num_comments:
        parts.append(
            f'<a class="emojilink coda-prev" href="#bookmark-{bookmark.id}-comment-{sibling_idx + 1}">'
            "👈</a>",
        )
    if sibling_idx > 1:
        parts.append(
            f'<a class="emojilink coda-next" href="#bookmark-{bookmark.id}-comment-{sibling_idx - 1}">'
            "👉</a>",
        )
    if bookmark.num_comments > 1:
        parts.append(f'<span class="coda-this">{sibling_idx}/{bookmark.num_comments}</span>')
    parts.append("</span>")
    return " ".join(parts)


def render_comment(comment: CoreComment, bookmark: CoreBookmark) -> CommentRender:
    """
    Render a comment's inner and full fragments. Pure and deterministic.

    Raises:
        RenderIntegrityError: If the comment's sibling index is missing or outside
            1..numComments of its bookmark.
    """
    idx = comment.sibling_idx
    if idx is None or idx < 1 or idx > bookmark.num_comments:
        raise RenderIntegrityError(
            f"Comment {comment.id} has sibling index {idx} but bookmark {bookmark.id} "
            f"has {bookmark.num_comments} comments",
        )

    anchor = f"comment-{comment.id}"
    timestamp = format_timestamp(comment.created_time)
    if comment.created_time != comment.modified_time:
        timestamp += f" → {format_timestamp(comment.modified_time)}"
    anchor_link = f' <a title="Link to this comment" href="#{anchor}" class="emojilink">🔗</a>'
    edit_link = (
        f' <a title="Edit comment" id="edit-comment-button-{comment.id}" href="#"'
        ' class="emojilink edit-comment-button comment-button">💌</a>'
    )

    inner = (
        f'<div id="{anchor}" class="comment"><pre class="unrendered">\n'
        f"{html.escape(comment.content)}</pre>\n"
        f"{anchor_link}{edit_link} {timestamp}\n"
        "</div>"
    )
    pre, post = render_bookmark_header(bookmark, f"-comment-{idx}")
    full = "".join([pre, inner, render_coda(idx, bookmark), post])
    return CommentRender(inner=inner, full=full)


def render_bookmark(bookmark: CoreBookmark, inner_renders: Sequence[str]) -> str:
    """Assemble a bookmark render from its comments' inner fragments (newest first)."""
    pre, post = render_bookmark_header(bookmark)
    return "\n".join([pre, "\n".join(inner_renders), post])


async def rerender_comment(
    db: AsyncSession,
    comment: CoreComment,
    bookmark: CoreBookmark,
    now: float | None = None,
) -> CommentRender:
    """
    Render a comment and persist both fragments.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    rendered = render_comment(comment, bookmark)
    await db.execute(
        update(Comment)
        .where(Comment.id == comment.id)
        .values(
            inner_render=rendered.inner,
            full_render=rendered.full,
            rendered_time=now_ms() if now is None else now,
        ),
    )
    return rendered


async def rerender_just_bookmark(
    db: AsyncSession,
    bookmark: CoreBookmark,
    preexisting_renders: Sequence[str] | None = None,
    now: float | None = None,
) -> str:
    """
    Recompute a bookmark's render from its comments' cached inner fragments.

    Comments are not re-rendered. When `preexisting_renders` is given it is used
    as-is (newest first), otherwise the stored fragments are read ordered by
    sibling index, newest first.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    if preexisting_renders is None:
        result = await db.execute(
            select(Comment.inner_render)
            .where(Comment.bookmark_id == bookmark.id)
            .order_by(Comment.sibling_idx.desc(), Comment.id.desc()),
        )
        preexisting_renders = list(result.scalars().all())

    render = render_bookmark(bookmark, preexisting_renders)
    await db.execute(
        update(Bookmark)
        .where(Bookmark.id == bookmark.id)
        .values(render=render, rendered_time=now_ms() if now is None else now),
    )
    return render


async def rerender_just_bookmark_by_id(
    db: AsyncSession,
    bookmark_id: int,
    now: float | None = None,
) -> str:
    """Like rerender_just_bookmark, resolving the bookmark from its id first."""
    bookmark = await db.get(Bookmark, bookmark_id)
    if bookmark is None:
        raise ValueError(f"Unknown bookmark {bookmark_id}")
    return await rerender_just_bookmark(db, CoreBookmark.from_row(bookmark), now=now)


async def fast_update_bookmark_with_new_comment(
    db: AsyncSession,
    bookmark_render: str,
    bookmark_id: int,
    comment_render: str,
    num_comments: int,
    now: float | None = None,
) -> str:
    """
    Splice a new comment's inner fragment into a cached bookmark render.

    The header is the first line of the render, so the new (newest) comment goes
    right after the first newline. numComments becomes `num_comments + 1` and
    modifiedTime/renderedTime are bumped.

    Raises:
        RenderIntegrityError: If the render has no newline or does not start with
            this bookmark's header.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    newline = bookmark_render.find("\n")
    if newline < 0:
        raise RenderIntegrityError(f"No newline in render of bookmark {bookmark_id}")
    if not bookmark_render.startswith(f'<div id="bookmark-{bookmark_id}" '):
        raise RenderIntegrityError(f"Render of bookmark {bookmark_id} does not start with its header")

    split = newline + 1
    new_render = bookmark_render[:split] + comment_render + "\n" + bookmark_render[split:]
    now = now_ms() if now is None else now
    await db.execute(
        update(Bookmark)
        .where(Bookmark.id == bookmark_id)
        .values(
            render=new_render,
            rendered_time=now,
            modified_time=now,
            num_comments=num_comments + 1,
        ),
    )
    return new_render


async def refresh_comment_renders(
    db: AsyncSession,
    bookmark: CoreBookmark,
    now: float | None = None,
) -> list[str]:
    """
    Re-render every comment of a bookmark, writing only rows whose fragments changed.

    Returns:
        The inner fragments, newest first.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    result = await db.execute(
        select(Comment)
        .where(Comment.bookmark_id == bookmark.id)
        .order_by(Comment.sibling_idx.desc(), Comment.id.desc()),
    )
    comments = list(result.scalars().all())
    now = now_ms() if now is None else now

    changed = 0
    for comment in comments:
        rendered = render_comment(CoreComment.from_row(comment), bookmark)
        if rendered.inner != comment.inner_render or rendered.full != comment.full_render:
            comment.inner_render = rendered.inner
            comment.full_render = rendered.full
            comment.rendered_time = now
            changed += 1
    if changed:
        await db.flush()
    logger.debug(
        "Refreshed comment renders bookmark_id=%s changed=%d total=%d",
        bookmark.id,
        changed,
        len(comments),
    )
    return [c.inner_render for c in comments]


async def on_comment_created(
    db: AsyncSession,
    comment: CoreComment,
    bookmark: CoreBookmark,
    bookmark_render: str,
    now: float | None = None,
) -> CommentRender:
    """
    Update cached renders after a comment was inserted.

    Args:
        db: Database session.
        comment: The new comment, with sibling index `bookmark.num_comments + 1`.
        bookmark: The bookmark as it was before the insert.
        bookmark_render: The bookmark's cached render before the insert.
        now: Timestamp for renderedTime/modifiedTime.

    Returns:
        The new comment's fragments.
    """
    now = now_ms() if now is None else now
    updated = replace(bookmark, num_comments=bookmark.num_comments + 1)
    rendered = await rerender_comment(db, comment, updated, now)

    if bookmark.num_comments == 0:
        # Nothing to splice into: an empty comment list has no line of its own
        await db.execute(
            update(Bookmark)
            .where(Bookmark.id == bookmark.id)
            .values(num_comments=updated.num_comments, modified_time=now),
        )
        await rerender_just_bookmark(db, updated, now=now)
    else:
        await fast_update_bookmark_with_new_comment(
            db, bookmark_render, bookmark.id, rendered.inner, bookmark.num_comments, now,
        )

    # Older siblings gain a "previous" link and a new x/N indicator
    await refresh_comment_renders(db, updated, now)
    return rendered


async def on_comment_edited(
    db: AsyncSession,
    comment: CoreComment,
    bookmark: CoreBookmark,
    now: float | None = None,
) -> CommentRender:
    """Re-render an edited comment and its bookmark."""
    now = now_ms() if now is None else now
    rendered = await rerender_comment(db, comment, bookmark, now)
    await rerender_just_bookmark(db, bookmark, now=now)
    return rendered


async def on_bookmark_created(
    db: AsyncSession,
    bookmark: CoreBookmark,
    now: float | None = None,
) -> str:
    """Render a new bookmark and its initial comments from scratch."""
    inner_renders = await refresh_comment_renders(db, bookmark, now)
    return await rerender_just_bookmark(db, bookmark, inner_renders, now)


async def on_bookmark_edited(
    db: AsyncSession,
    bookmark: CoreBookmark,
    now: float | None = None,
) -> str:
    """Re-render a bookmark whose url/title changed, including every comment's header."""
    inner_renders = await refresh_comment_renders(db, bookmark, now)
    return await rerender_just_bookmark(db, bookmark, inner_renders, now)


async def on_bookmarks_merged(
    db: AsyncSession,
    from_id: int,
    into: CoreBookmark,
    now: float | None = None,
) -> str:
    """Re-render the surviving bookmark of a merge after its thread was re-indexed."""
    logger.info("Re-rendering bookmark %s after merging bookmark %s into it", into.id, from_id)
    inner_renders = await refresh_comment_renders(db, into, now)
    return await rerender_just_bookmark(db, into, inner_renders, now)
