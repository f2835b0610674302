"""Feed learned corrections and rejections back into the annotation prompt."""

from __future__ import annotations

from typing import Iterable

from aves.learning.patterns import PatternLearner


def build_prompt(
    base_prompt: str,
    learner: PatternLearner,
    species: str | None,
    terms: Iterable[str] | None = None,
) -> str:
    """Append species-specific guidance to *base_prompt*.

    Frequently proposed terms are listed first, then position hints from
    usable patterns. Rejection reasons are included once they recur
    ``common_rejection_min_count`` times. Without a species (or without
    anything learned) the base prompt is returned unchanged.
    """
    if not species:
        return base_prompt

    prompt = base_prompt
    stats = learner.species_stats(species)
    if stats is not None and stats.features:
        top = learner.recommended_features(species, limit=5)
        prompt += (
            f"\n\nSPECIES-SPECIFIC GUIDANCE for {species}:\n"
            f"- Common features to prioritize: {', '.join(top)}\n"
            f"- Based on {stats.total_annotations} previous annotations"
        )

    if terms is None:
        terms = [p.term for p in learner.patterns_for_species(species)]
    terms = list(dict.fromkeys(terms))
    correction_lines: list[str] = []
    rejection_lines: list[str] = []
    for term in terms:
        pattern = learner.usable_pattern(species, term)
        if pattern is not None and pattern.corrections > 0:
            d = pattern.mean_delta
            correction_lines.append(
                f"- {term}: shift position by ({d.dx:+.3f}, {d.dy:+.3f}) "
                f"and size by ({d.dw:+.3f}, {d.dh:+.3f}) "
                f"[based on {pattern.sample_count} reviews]"
            )
        common = learner.common_rejections(species, term)
        if common:
            reasons = ", ".join(f'"{reason}" ({count}x)' for reason, count in common)
            rejection_lines.append(f"- {term}: avoid patterns that caused: {reasons}")

    if correction_lines:
        prompt += (
            f"\n\nCORRECTION-BASED ADJUSTMENTS for {species}:\n"
            + "\n".join(correction_lines)
            + "\nNote: these adjustments are learned from expert corrections."
        )
    if rejection_lines:
        prompt += (
            "\n\nCOMMON REJECTION PATTERNS TO AVOID:\n"
            + "\n".join(rejection_lines)
        )
    return prompt
