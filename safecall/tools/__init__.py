# Tools Package
