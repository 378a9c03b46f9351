"""
Unit tests for page-count estimation.
"""

import pytest

from pipeline.pagination import PaginationEstimator, PaginationInfo, MAX_NAV_PAGE


@pytest.fixture
def estimator():
    return PaginationEstimator()


def nav(*items, current=None):
    links = []
    for item in items:
        if item == current:
            links.append(f'<span aria-current="page">{item}</span>')
        else:
            links.append(f'<a href="/reviews?page={item}">{item}</a>')
    return f'<nav aria-label="Pagination">{"".join(links)}</nav>'


class TestPaginationEstimator:

    def test_embedded_rating_count(self, estimator):
        html = '<html><script>window.__DATA__ = {"ratingCount":120};</script></html>'
        assert estimator.estimate(html).total_pages == 12

    def test_jsonld_rating_count_rounds_up(self, estimator):
        html = (
            '<script type="application/ld+json">'
            '{"@type": "SoftwareApplication", "aggregateRating": {"ratingCount": "121"}}'
            '</script>'
        )
        assert estimator.estimate(html).total_pages == 13

    def test_jsonld_graph_rating_count(self, estimator):
        html = (
            '<script type="application/ld+json">'
            '{"@context": "https://schema.org", "@graph": ['
            '{"@type": "Organization", "name": "Acme"},'
            '{"@type": "SoftwareApplication", "aggregateRating": {"ratingCount": 87}}'
            ']}'
            '</script>'
        )
        assert estimator.estimate(html).total_pages == 9

    def test_jsonld_top_level_list(self, estimator):
        html = (
            '<script type="application/ld+json">'
            '[{"@type": "BreadcrumbList"}, {"aggregateRating": {"ratingCount": "40"}}, "ignored"]'
            '</script>'
        )
        assert estimator.estimate(html).total_pages == 4

    def test_superscript_in_nav_is_not_a_page(self, estimator):
        html = '<nav aria-label="Pagination"><a href="?page=2">2</a><span>²</span><sup>³</sup></nav>'
        info = estimator.estimate(html)
        assert info.total_pages == 2
        assert info.current_page == 1

    def test_superscript_in_active_marker_is_not_a_page(self, estimator):
        info = estimator.estimate('<ul><li class="active">³</li></ul>')
        assert info.to_dict() == {"current_page": 1, "total_pages": 1}

    def test_review_count_text(self, estimator):
        html = '<h2>Reviews (57)</h2>'
        assert estimator.estimate(html).total_pages == 6

    def test_small_review_count_is_ignored(self, estimator):
        html = '<h2>Reviews (8)</h2>'
        assert estimator.estimate(html).total_pages == 1

    def test_highest_page_param(self, estimator):
        html = '<a href="/reviews?page=2">2</a><a href="/reviews?sort=new&amp;page=41">Last</a>'
        assert estimator.estimate(html).total_pages == 41

    def test_pagination_nav_numbers(self, estimator):
        html = '<nav class="pagination"><span>1</span><span>2</span><span>3</span><span>…</span><span>17</span></nav>'
        assert estimator.estimate(html).total_pages == 17

    def test_nav_values_beyond_cap_are_ignored(self, estimator):
        html = f'<nav aria-label="pagination"><span>4</span><span>{MAX_NAV_PAGE + 5}</span></nav>'
        assert estimator.estimate(html).total_pages == 4

    def test_page_of_text(self, estimator):
        html = '<p>Showing page 1 of 9</p>'
        assert estimator.estimate(html).total_pages == 9

    def test_pages_total_text(self, estimator):
        html = '<p>23 pages total</p>'
        assert estimator.estimate(html).total_pages == 23

    def test_next_link_on_single_page_means_two(self, estimator):
        html = '<div class="reviews"></div><a rel="next" href="/more">More</a>'
        assert estimator.estimate(html).total_pages == 2

    def test_no_signals_is_one_page(self, estimator):
        info = estimator.estimate('<html><body><p>Nothing here</p></body></html>')
        assert info.total_pages == 1
        assert info.current_page == 1

    @pytest.mark.parametrize("html", [None, ""])
    def test_empty_input(self, estimator, html):
        assert estimator.estimate(html).to_dict() == {"current_page": 1, "total_pages": 1}

    def test_current_page_from_nav(self, estimator):
        info = estimator.estimate(nav(1, 2, 3, 4, current=3))
        assert info.current_page == 3
        assert info.total_pages == 4

    def test_total_never_below_current_page(self, estimator):
        info = estimator.estimate('<ul><li class="active">7</li></ul>')
        assert info.current_page == 7
        assert info.total_pages == 7

    def test_adding_signals_never_lowers_estimate(self, estimator):
        base = '<script>{"ratingCount":250}</script>'
        variants = [
            base,
            base + '<p>Page 1 of 3</p>',
            base + nav(1, 2, 5),
            base + '<h2>Reviews (12)</h2>',
            base + '<a href="?page=40">40</a>',
        ]
        estimates = [estimator.estimate(html).total_pages for html in variants]

        assert estimates[0] == 25
        assert all(pages >= estimates[0] for pages in estimates)
        assert estimates[-1] == 40

    def test_pagination_info_repr(self):
        assert "total_pages=3" in repr(PaginationInfo(1, 3))
