"""Sample payload and field reference served by GET /import/template."""

TEMPLATE_FILENAME = "category-import-template.json"

IMPORT_TEMPLATE = {
    "categories": [
        {
            "name": "Electronics",
            "slug": "electronics",
            "description": "All electronic devices and accessories",
            "image": "https://example.com/images/electronics.jpg",
            "isActive": True,
            "sortOrder": 1,
            "products": [
                {
                    "name": "USB-C Cable",
                    "description": "1m braided USB-C to USB-C cable",
                    "price": 9.99,
                    "sku": "USB-C-CABLE",
                    "tags": ["cables", "usb-c"],
                    "isFeatured": False,
                    "variants": [
                        {"size": "1m", "color": "Black", "colorCode": "#000000", "stock": 120},
                    ],
                    "images": [
                        {
                            "url": "https://example.com/images/usb-c-cable.jpg",
                            "alt": "USB-C cable",
                            "sortOrder": 0,
                            "isPrimary": True,
                        },
                    ],
                },
            ],
        },
        {
            "name": "Smartphones",
            "slug": "smartphones",
            "description": "Mobile phones and smartphones",
            "image": "/uploads/categories/smartphones.jpg",
            "isActive": True,
            "sortOrder": 2,
        },
        {
            "name": "Laptops",
            "description": "Portable computers and laptops",
            "image": None,
            "isActive": True,
        },
    ],
}

FIELD_DOCS = {
    "category": {
        "name": "Required. Non-empty string, at most 100 characters.",
        "slug": "Optional. Lowercase letters, numbers and hyphens, at most 100 characters. "
                "Generated from the name when omitted; other characters are corrected with a warning.",
        "description": "Optional. String, at most 500 characters.",
        "image": "Optional. URL starting with http, or a path starting with /. At most 255 characters.",
        "isActive": "Optional boolean, default true.",
        "sortOrder": "Optional integer 0-9999. Assigned after the current maximum when omitted.",
        "products": "Optional array of products imported into this category.",
    },
    "product": {
        "name": "Required string.",
        "description": "Required string.",
        "price": "Required non-negative number.",
        "sku": "Optional. Generated from the name when omitted; made unique with -2, -3, ...",
        "slug": "Optional. Generated from the name when omitted.",
        "costPrice / comparePrice / salePrice": "Optional non-negative numbers.",
        "saleEndDate": "Optional ISO 8601 date.",
        "tags": "Optional array of strings.",
        "isActive / isFeatured / isOnSale": "Optional booleans.",
        "variants": "Optional array of {size, color, colorCode, stock, sku, price, comparePrice}.",
        "images": "Optional array of {url, alt, color, sortOrder, isPrimary}; url is required.",
    },
    "options": {
        "existingCategories": "'error' stops the batch if any category exists, 'skip' keeps existing "
                              "categories, 'replace' deletes and re-creates them.",
        "updateExisting": "Only with existingCategories='skip': update existing categories in place.",
        "skipDuplicates": "Used when existingCategories is omitted: true means 'skip', false means 'error'.",
        "generateSlugs": "Default true.",
        "generateSortOrder": "Default true.",
        "importProducts": "Default true.",
        "requireAllValid": "Default false. When true, any invalid category stops the whole batch.",
    },
}
