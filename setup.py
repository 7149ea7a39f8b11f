from setuptools import setup, find_packages

setup(
    name='sway-ide',
    version='0.2.0',
    description='Terminal code editor with code folding, language-server support and crash recovery',
    long_description=open('README.md', encoding='utf-8').read(),
    long_description_content_type='text/markdown',
    author='Siergej Sobolewski',
    author_email='s.sobolewski@hotmail.com',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'pygments>=2.13.0',
        'toml>=0.10.2',
        'chardet>=5.0.0',
        'wcwidth>=0.2.6',
        'pygls>=1.0.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'sway-ide = sway_ide.ui:main'
        ]
    },
    include_package_data=True,
    package_data={'sway_ide': ['config.toml']},
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: GNU General Public License v3 (GPLv3)',
        'Programming Language :: Python :: 3.11',
    ],
    python_requires='>=3.11',
    license='GPLv3',
)
