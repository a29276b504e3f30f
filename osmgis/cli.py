"""Click CLI commands for osmgis."""

import logging
from typing import Tuple

import click

from .constants import DB_PATH
from .database import SpatialDatabase
from .errors import OSMGISError
from .export import export_layer
from .loader import load
from .pipeline import GISLayers
from .remote import NominatimAreaProvider
from .transform import TRANSFORMS
from .utilities import build_area_query

logger = logging.getLogger(__name__)


def _parse_tags(tags: Tuple[str, ...]):
    """``("building", "highway=primary", "highway=secondary")`` to a tag specification."""
    if not tags:
        return None
    if all("=" not in t for t in tags):
        return list(tags)
    spec = {}
    for tag in tags:
        key, _, value = tag.partition("=")
        values = spec.setdefault(key, [])
        if value:
            values.append(value)
    return spec


@click.group()
def cli():
    """osmgis CLI for turning OpenStreetMap data into GIS layers."""
    pass


@cli.command()
@click.argument('place_name')
@click.option('--db', 'db_path', default=DB_PATH, help='SQLite database file')
@click.option('--building-params', type=click.Path(exists=True), help='Building parameters JSON file')
@click.option('--road-params', type=click.Path(exists=True), help='Road parameters JSON file')
def layers(place_name: str, db_path: str, building_params: str, road_params: str):
    """Download a place and build its building and road layers."""
    db = SpatialDatabase(db_path)
    result = GISLayers(db, building_parameters=building_params, road_parameters=road_params).run(place_name)
    if result is None:
        raise click.ClickException(f"Cannot create the GIS layers of {place_name}")
    for name, value in result.items():
        click.echo(f"{name}: {value}")


@cli.command(name='load')
@click.argument('osm_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--prefix', '-p', required=True, help='Prefix of the raw OSM tables')
@click.option('--tag', '-t', 'tags', multiple=True, help='KEY or KEY=VALUE of the tags to keep, repeatable')
@click.option('--db', 'db_path', default=DB_PATH, help='SQLite database file')
def load_file(osm_file: str, prefix: str, tags: Tuple[str, ...], db_path: str):
    """Load an .osm or .osm.pbf file into raw OSM tables."""
    result = load(SpatialDatabase(db_path), prefix, osm_file, _parse_tags(tags))
    if not result:
        raise click.ClickException(result.message)
    click.echo(f"Loaded {osm_file} with prefix {prefix}")


@cli.command()
@click.argument('kind', type=click.Choice(sorted(TRANSFORMS)))
@click.option('--prefix', '-p', required=True, help='Prefix of the raw OSM tables')
@click.option('--epsg', '-e', required=True, type=int, help='Target EPSG code')
@click.option('--tag', '-t', 'tags', multiple=True, help='KEY or KEY=VALUE filter, repeatable')
@click.option('--column', '-c', 'columns', multiple=True, help='Tag key to keep as a column, repeatable')
@click.option('--db', 'db_path', default=DB_PATH, help='SQLite database file')
def transform(kind: str, prefix: str, epsg: int, tags: Tuple[str, ...], columns: Tuple[str, ...], db_path: str):
    """Build a points, lines or polygons table from raw OSM tables."""
    result = TRANSFORMS[kind](SpatialDatabase(db_path), prefix, epsg, _parse_tags(tags), list(columns))
    if not result:
        raise click.ClickException(result.message)
    click.echo(result.table_name)


@cli.command()
@click.argument('table_name')
@click.argument('output', type=click.Path(dir_okay=False))
@click.option('--db', 'db_path', default=DB_PATH, help='SQLite database file')
@click.option('--driver', default=None, help='OGR driver, guessed from the extension by default')
def export(table_name: str, output: str, db_path: str, driver: str):
    """Export a layer table to a GIS file."""
    try:
        path = export_layer(SpatialDatabase(db_path), table_name, output, driver)
    except OSMGISError as e:
        raise click.ClickException(str(e))
    click.echo(f"Wrote {path}")


@cli.command()
@click.argument('place_name')
def query(place_name: str):
    """Print the Overpass query covering a place."""
    area = NominatimAreaProvider().area_from_place(place_name)
    if area is None:
        raise click.ClickException(f"Cannot find an area from the place name {place_name}")
    click.echo(build_area_query(area))


if __name__ == '__main__':
    cli()
