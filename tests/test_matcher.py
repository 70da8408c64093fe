import numpy as np
import pytest

from face_checkin.exceptions import DescriptorMismatchError
from face_checkin.matcher import build_gallery, match
from face_checkin.types import UNKNOWN_LABEL, Identity, LabeledDescriptor

from conftest import unit_descriptor


def test_exact_descriptor_matches_its_owner(labeled, ann):
    gallery = build_gallery(labeled)
    result = match(gallery, unit_descriptor(0))
    assert result.identity == ann
    assert result.distance == 0.0
    assert result.confidence == 1.0
    assert result.label == "Ann Lee (E001)::m-ann"


def test_far_descriptor_is_unknown(labeled):
    gallery = build_gallery(labeled)
    # Equidistant (sqrt 2) from both references.
    result = match(gallery, unit_descriptor(2))
    assert result.label == UNKNOWN_LABEL
    assert result.is_known is False
    assert result.distance == pytest.approx(np.sqrt(2.0))


def test_threshold_is_inclusive(labeled, ann):
    gallery = build_gallery(labeled)
    query = unit_descriptor(0)
    query[0] = 0.5
    assert match(gallery, query, threshold=0.5).identity == ann
    assert match(gallery, query, threshold=0.49).is_known is False


def test_empty_gallery_returns_unknown():
    gallery = build_gallery([])
    assert len(gallery) == 0
    result = match(gallery, unit_descriptor(0))
    assert result.label == UNKNOWN_LABEL
    assert result.distance == float("inf")


def test_query_length_mismatch_raises(labeled):
    gallery = build_gallery(labeled)
    with pytest.raises(DescriptorMismatchError):
        match(gallery, np.zeros(64, dtype=np.float32))


def test_mixed_reference_lengths_rejected(ann, bob):
    with pytest.raises(DescriptorMismatchError):
        build_gallery(
            [
                LabeledDescriptor(identity=ann, descriptors=[np.zeros(128)]),
                LabeledDescriptor(identity=bob, descriptors=[np.zeros(64)]),
            ]
        )


def test_ties_go_to_the_first_reference(ann, bob):
    gallery = build_gallery(
        [
            LabeledDescriptor(identity=ann, descriptors=[unit_descriptor(0, scale=0.2)]),
            LabeledDescriptor(identity=bob, descriptors=[unit_descriptor(1, scale=0.2)]),
        ]
    )
    result = match(gallery, np.zeros(128, dtype=np.float32))
    assert result.identity == ann


def test_best_of_several_references_counts(ann, bob):
    gallery = build_gallery(
        [
            LabeledDescriptor(identity=ann, descriptors=[unit_descriptor(0), unit_descriptor(3)]),
            LabeledDescriptor(identity=bob, descriptors=[unit_descriptor(1)]),
        ]
    )
    assert len(gallery) == 3
    assert len(gallery.identities) == 2
    assert match(gallery, unit_descriptor(3)).identity == ann


def test_without_drops_an_identity(labeled, bob):
    gallery = build_gallery(labeled).without("m-ann")
    assert [owner.identity_id for owner in gallery.owners] == ["m-bob"]
    assert match(gallery, unit_descriptor(0)).is_known is False
    assert match(gallery, unit_descriptor(1)).identity == bob

    empty = gallery.without("m-bob")
    assert len(empty) == 0
    assert empty.dimension is None


def test_identity_without_code_keeps_plain_label():
    carol = Identity(identity_id="42", display_name="Carol")
    gallery = build_gallery([LabeledDescriptor(identity=carol, descriptors=[unit_descriptor(5)])])
    assert match(gallery, unit_descriptor(5)).label == "Carol::42"
