#!/usr/bin/env python3
from importlib.metadata import version as get_version

from packaging.version import parse

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints'
]

templates_path = ['_templates']
source_suffix = '.rst'
master_doc = 'index'
project = 'tlsbootstrap'
author = 'The tlsbootstrap developers'
copyright = '2026, ' + author

v = parse(get_version('tlsbootstrap'))
version = v.base_version
release = v.public

language = 'en'

exclude_patterns = ['_build']
pygments_style = 'sphinx'
autodoc_default_options = {
    'members': True,
    'show-inheritance': True
}
todo_include_todos = False

html_theme = 'sphinx_rtd_theme'
htmlhelp_basename = project + 'doc'

intersphinx_mapping = {'python': ('https://docs.python.org/3/', None),
                       'anyio': ('https://anyio.readthedocs.org/en/latest/', None),
                       'cryptography': ('https://cryptography.io/en/latest/', None)}
