"""Entry point for `python -m movie_aggregator`"""

from movie_aggregator.cli.main import app

if __name__ == "__main__":
    app()
