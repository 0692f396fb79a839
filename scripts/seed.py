"""Populate a development database with accounts, categories and posts.

Creates an ``admin`` account and a set of regular authors (all sharing the
password given by ``--password``), a handful of categories, and posts with
tags, likes and comments.  Category post counts are recomputed at the end the
same way the API does it.
"""
import argparse
import asyncio
import random
import time
from datetime import timedelta

from sqlalchemy import select

from blog_api.config import settings
from blog_api.database import Base, async_session, engine
from blog_api.models import Category, Comment, Like, Post, PostStatus, Role, Tag, User
from blog_api.security import PasswordHasher, utcnow
from blog_api.services.engagement_service import refresh_category_count
from blog_api.transforms import apply_changes, hash_password_change, prepare, slugify

CATEGORIES = ["Technology", "Travel", "Food", "Science", "Culture", "Programming"]
TOPICS = ["python", "fastapi", "postgresql", "docker", "testing", "security", "design"]


async def seed(small: bool = False, password: str = "Passw0rd") -> None:
    num_authors = 5 if small else 50
    num_posts = 30 if small else 2000

    print(f"Seeding: {num_authors} authors, {num_posts} posts, {len(CATEGORIES)} categories")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    hasher = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    # One hash shared by every seeded account keeps seeding fast.
    credentials = prepare({"password": password}, hash_password_change(hasher))

    async with async_session() as session:
        admin = User(username="admin", email="admin@example.com", role=Role.ADMIN)
        apply_changes(admin, credentials)
        session.add(admin)

        authors = []
        for i in range(num_authors):
            author = User(
                username=f"author_{i:03d}",
                email=f"author_{i:03d}@example.com",
                first_name="Author",
                last_name=str(i),
                bio=f"I am seeded author number {i}.",
            )
            apply_changes(author, credentials)
            session.add(author)
            authors.append(author)
        await session.flush()
        print(f"  Created {len(authors) + 1} accounts")

        categories = []
        for name in CATEGORIES:
            category = Category(name=name, slug=slugify(name), description=f"Posts about {name.lower()}")
            session.add(category)
            categories.append(category)
        await session.flush()

        tags = {topic: Tag(name=topic) for topic in TOPICS}
        session.add_all(tags.values())

        for i in range(num_posts):
            topic = random.choice(TOPICS)
            status = random.choices(
                [PostStatus.PUBLISHED, PostStatus.DRAFT, PostStatus.ARCHIVED], weights=[8, 1, 1]
            )[0]
            created = utcnow() - timedelta(days=random.randint(0, 365))
            title = f"Post {i}: notes on {topic}"
            post = Post(
                title=title,
                slug=f"{slugify(title)}-{i}",
                content=f"This is the body of post {i}, all about {topic}. " * 10,
                status=status,
                views=random.randint(0, 5000),
                published_at=created if status == PostStatus.PUBLISHED else None,
                created_at=created,
                author_id=random.choice(authors).id,
                category_id=random.choice(categories).id,
                tags=[tags[name] for name in {topic, *random.sample(TOPICS, k=random.randint(0, 2))}],
            )
            session.add(post)
        await session.flush()

        post_ids = (await session.execute(select(Post.id))).scalars().all()
        for post_id in post_ids:
            for liker in random.sample(authors, k=random.randint(0, min(5, len(authors)))):
                session.add(Like(post_id=post_id, user_id=liker.id))
            for _ in range(random.randint(0, 3)):
                commenter = random.choice(authors)
                session.add(Comment(
                    post_id=post_id,
                    user_id=commenter.id,
                    content=f"Thanks for writing this, from {commenter.username}.",
                ))
        await session.flush()

        for category in categories:
            await refresh_category_count(session, category.id)

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Admin login: admin@example.com / {password}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use a small dataset (30 posts)")
    parser.add_argument("--password", default="Passw0rd", help="Password for every seeded account")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small, password=args.password))


if __name__ == "__main__":
    main()
