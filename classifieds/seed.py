from classifieds.repositories import PersistenceGateway

# (name, slug, children)
DEFAULT_CATEGORIES = [
    ("املاک", "real-estate", [("فروش مسکونی", "residential-sale"), ("اجاره مسکونی", "residential-rent")]),
    ("وسایل نقلیه", "vehicles", [("خودرو", "cars"), ("موتورسیکلت", "motorcycles")]),
    ("کالای دیجیتال", "electronics", [("موبایل و تبلت", "mobile-tablet"), ("لپ‌تاپ و رایانه", "computers")]),
    ("خانه و آشپزخانه", "home-kitchen", [("مبلمان", "furniture"), ("لوازم آشپزخانه", "kitchen")]),
    ("خدمات", "services", []),
    ("وسایل شخصی", "personal", [("پوشاک", "clothing"), ("ساعت و زیورآلات", "jewelry")]),
    ("سرگرمی و فراغت", "hobbies", [("ورزش", "sports"), ("کتاب و مجله", "books")]),
    ("استخدام و کاریابی", "jobs", []),
]


def seed_categories(gateway: PersistenceGateway) -> int:
    """Insert any missing default categories (idempotent). Returns the number added."""
    added = 0
    for order, (name, slug, children) in enumerate(DEFAULT_CATEGORIES):
        parent = gateway.first("categories", {"slug": slug, "parent_id__isnull": True})
        if parent is None:
            parent_id = gateway.insert("categories", {"name": name, "slug": slug, "sort_order": order, "parent_id": None})
            added += 1
        else:
            parent_id = parent["id"]

        existing = {c["slug"] for c in gateway.query("categories", {"parent_id": parent_id})}
        to_add = [
            {"name": child_name, "slug": child_slug, "sort_order": child_order, "parent_id": parent_id}
            for child_order, (child_name, child_slug) in enumerate(children)
            if child_slug not in existing
        ]
        if to_add:
            gateway.insert_many("categories", to_add)
            added += len(to_add)
    return added
