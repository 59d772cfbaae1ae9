"""KKPhim adapter: same API family as Ophim, with rating-database ids"""

from movie_aggregator.sources.ophim import OphimAdapter


class KKPhimAdapter(OphimAdapter):
    """phimapi.com catalog"""

    name = "kkphim"
    listing_path = "/danh-sach/phim-moi-cap-nhat"
    detail_path = "/phim/{slug}"
