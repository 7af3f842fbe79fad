"""Tests for storage key helpers."""

import re

from image_library.keys import build_key, generate_base_name, normalize_key, sanitize_name


def test_sanitize_name():
    assert sanitize_name("Chocolate Cake.JPG") == "chocolate-cake"
    assert sanitize_name("C:\\Users\\me\\Mom's Pie (1).png") == "mom-s-pie--1-"
    assert sanitize_name("notes.txt") == "notes"
    assert sanitize_name("") == "image"


def test_generate_base_name_shape():
    name = generate_base_name("Chocolate Cake.jpg", now_ms=1700000000000)
    assert re.fullmatch(r"chocolate-cake-1700000000000-[0-9a-f]{8}", name)


def test_base_names_are_unique():
    names = {generate_base_name("same.jpg", now_ms=1) for _ in range(50)}
    assert len(names) == 50


def test_build_key():
    assert build_key("pictures", "cake-1-abcdef12", "webp") == "pictures/cake-1-abcdef12.webp"
    assert build_key("/blog/", "cake", ".jpg") == "blog/cake.jpg"
    assert build_key("", "cake", "png") == "cake.png"


def test_normalize_key():
    assert normalize_key("/pictures/a.webp") == "pictures/a.webp"
    assert normalize_key("pictures\\a.webp") == "pictures/a.webp"
