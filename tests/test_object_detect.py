from camstages.object_detect import Detection, Rectangle


def test_area():
    assert Rectangle(5, 5, 3, 4).area() == 12
    assert Rectangle(1, 2, 0, 7).area() == 0


def test_bounded_to_self_is_identity():
    r = Rectangle(3, 4, 10, 20)
    assert r.bounded_to(r) == r


def test_bounded_to_contained_rectangle():
    outer = Rectangle(0, 0, 100, 100)
    inner = Rectangle(10, 20, 30, 40)
    assert outer.bounded_to(inner) == inner
    assert inner.bounded_to(outer) == inner


def test_bounded_to_partial_overlap_is_symmetric():
    a = Rectangle(0, 0, 10, 10)
    b = Rectangle(5, 5, 10, 10)
    assert a.bounded_to(b) == b.bounded_to(a)
    assert a.bounded_to(b) == Rectangle(5, 5, 5, 5)


def test_bounded_to_disjoint_has_zero_area():
    a = Rectangle(0, 0, 10, 10)
    b = Rectangle(50, 50, 10, 10)
    assert a.bounded_to(b).area() == 0


def test_detection_string():
    d = Detection(1, "cat", 0.5, Rectangle(10, 20, 30, 40))
    assert str(d) == "cat[1] (0.5) @ 10,20 30x40"


def test_detection_string_rounds_confidence_to_two_digits():
    d = Detection(7, "dog", 0.8512, Rectangle(0, 0, 1, 1))
    assert str(d).startswith("dog[7] (0.85) @ ")